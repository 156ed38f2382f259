"""Console user interface built on rich."""
