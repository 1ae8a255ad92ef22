"""Command-line interface for fieldmatch."""
