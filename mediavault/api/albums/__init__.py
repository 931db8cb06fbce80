"""Albums module."""
