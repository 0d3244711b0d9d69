"""Tool operations behind each endpoint."""
