"""Command-line interface for syncspine."""
