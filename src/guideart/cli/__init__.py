"""Command-line interface for guideart."""
