"""Builtin argument recipes."""
