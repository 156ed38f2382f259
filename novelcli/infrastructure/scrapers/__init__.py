"""Chapter scrapers (ChapterFetcher implementations)."""
