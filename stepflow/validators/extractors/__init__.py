"""Parsers that turn tool output into retry-prompt parameters."""
