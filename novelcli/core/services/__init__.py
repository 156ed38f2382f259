"""Application services: chapter navigation, batch processing and the per-chapter pipeline."""
