"""Command-line interface for DM Pilot."""
