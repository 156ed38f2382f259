"""Token estimation and text chunking."""
