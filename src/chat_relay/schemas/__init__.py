"""Request and persistence schemas."""
