"""Clone every accessible GitHub repository into one organized directory."""

__version__ = "1.0.0"
