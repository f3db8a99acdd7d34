"""Textual status dashboard over a replayed Bot session."""
