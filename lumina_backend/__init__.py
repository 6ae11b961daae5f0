"""Lumina media catalog backend."""
