"""Command-line interface for player-data-store."""
