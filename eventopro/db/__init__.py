"""PostgreSQL configuration and schema migrations."""
