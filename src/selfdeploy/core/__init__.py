"""Core configuration, models and errors."""
