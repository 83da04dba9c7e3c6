"""Test fixtures for Story Mirror."""
