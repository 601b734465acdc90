"""Movement Trail streak & milestone engine."""

__version__ = "0.1.0"
