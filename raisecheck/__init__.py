"""Static checking of typed raising effects."""

__version__ = "0.1.0"
