"""Per-run decider, configuration and logging."""
