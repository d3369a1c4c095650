"""API routers for guideart."""
