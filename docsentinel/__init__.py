"""DocSentinel: detect documentation drift against source code."""

__version__ = "0.1.0"
