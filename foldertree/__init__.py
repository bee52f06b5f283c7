"""Hierarchical folder/file metadata engine with trash support."""
