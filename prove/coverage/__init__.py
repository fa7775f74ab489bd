"""Coverage map loading and changed-line coverage."""
