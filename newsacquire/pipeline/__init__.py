"""Post-discovery filtering: URL plausibility and article qualification."""
