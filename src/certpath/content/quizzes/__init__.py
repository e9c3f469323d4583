"""Bundled quiz bank, one JSON file per quiz."""
