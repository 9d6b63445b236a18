"""Domain models, clinical thresholds and input validation."""
