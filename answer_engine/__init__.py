"""Canonical answer cache and multi-source retrieval engine."""
