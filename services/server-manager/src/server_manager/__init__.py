"""Server lifecycle management over docker or kubernetes backends."""

__version__ = "0.1.0"
