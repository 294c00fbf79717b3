"""Runtime configuration."""
