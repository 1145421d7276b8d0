"""Configuration: settings and persona definitions."""
