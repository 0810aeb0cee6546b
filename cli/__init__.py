"""Command-line interface for LinguaCache."""
