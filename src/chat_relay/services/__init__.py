"""Digest services: generation, storage, delivery and scheduling."""
