"""Command-line surface for taskwright."""
