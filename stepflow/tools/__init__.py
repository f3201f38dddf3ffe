"""Command-line tools for step registries."""
