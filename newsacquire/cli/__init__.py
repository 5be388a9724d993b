"""Command-line interface for newsacquire."""
