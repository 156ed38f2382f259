"""Local file system adapters."""
