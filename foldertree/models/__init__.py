"""Data models shared by the service layer and its callers."""
