"""PostgreSQL support for the shared challenge store."""
