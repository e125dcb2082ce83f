"""Command-line interface for regwatch."""
