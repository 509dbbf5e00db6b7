"""Monox chat relay backend."""
