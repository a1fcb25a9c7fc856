"""Shared domain models and background task helpers."""
