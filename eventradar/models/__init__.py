"""Data models for eventradar."""
