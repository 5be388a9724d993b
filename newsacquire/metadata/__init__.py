"""Page metadata extraction (JSON-LD, meta tags)."""
