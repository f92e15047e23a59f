"""Configuration, logging helpers, and the error taxonomy."""
