"""Typed application configuration."""
