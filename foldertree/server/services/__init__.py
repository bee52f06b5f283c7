"""Services implementing the folder hierarchy."""
