"""Server runners (gunicorn, WSGI entry point)."""
