"""Environment-level configuration."""
