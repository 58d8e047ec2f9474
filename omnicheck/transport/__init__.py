"""Worker transports."""
