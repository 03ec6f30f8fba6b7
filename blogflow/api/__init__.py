"""HTTP API for blogflow."""
