"""HTTP API for the migration wizard."""
