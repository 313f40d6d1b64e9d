"""Version information for jpikit."""

__version__ = "0.3.0"
