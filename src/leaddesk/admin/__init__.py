"""Admin dashboard API: authentication, access control and audit."""
