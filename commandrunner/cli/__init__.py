"""Command line interface for commandrunner."""
