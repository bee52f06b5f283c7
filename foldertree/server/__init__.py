"""Hierarchy service, persistence and trash handling."""
