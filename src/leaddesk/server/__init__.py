"""WSGI entry points and the programmatic gunicorn runner."""
