"""Identity — bearer-token verification and the per-request context."""
