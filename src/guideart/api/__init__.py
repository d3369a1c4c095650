"""HTTP API for guideart (poster proxy, admin and health endpoints)."""
