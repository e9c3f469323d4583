"""Bundled pathway and quiz content."""
