"""Command-line interface for Story Mirror."""
