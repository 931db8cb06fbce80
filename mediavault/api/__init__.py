"""MEDIAVAULT API package."""
