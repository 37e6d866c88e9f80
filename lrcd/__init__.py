"""lrcd: a line-oriented chat relay daemon."""

__version__ = "0.1.0"
