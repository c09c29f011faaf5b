"""Random Image Server: serve or redirect to a random image from a directory."""

__version__ = "0.1.0"
