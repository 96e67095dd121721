"""Helpers for moving weights between numpy/float tooling and Q16.16 models."""
