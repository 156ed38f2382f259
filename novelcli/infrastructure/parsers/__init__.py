"""Parsers for chapter URLs and filenames."""
