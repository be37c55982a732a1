"""Command-line tools for the sequencing engine."""
