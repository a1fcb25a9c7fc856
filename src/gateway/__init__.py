"""Persistence-facing adapter forwarding change notifications to the engine."""
