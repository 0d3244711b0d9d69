"""Test package for the tool converter service."""
