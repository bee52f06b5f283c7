"""Server utilities."""
