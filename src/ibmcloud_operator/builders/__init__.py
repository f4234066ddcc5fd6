"""Builders for provider sessions."""
