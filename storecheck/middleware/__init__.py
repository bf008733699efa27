"""Request/response middleware and logging setup."""
