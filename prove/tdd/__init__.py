"""TDD phase detection and phase-specific policy."""
