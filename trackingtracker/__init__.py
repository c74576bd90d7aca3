"""Third-party tracker detection, classification and blocking."""

__version__ = "0.1.0"
