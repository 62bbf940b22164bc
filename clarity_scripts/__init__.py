"""Clarity: archive deduplication, cleanup and one-time result delivery."""
