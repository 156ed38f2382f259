"""Domain models: chapter records and AI response structures."""
