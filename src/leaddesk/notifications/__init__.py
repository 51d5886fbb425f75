"""Lead alert emails."""
