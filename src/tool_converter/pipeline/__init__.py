"""Subprocess conversion pipeline: accept, locate, run, stream."""
