"""Task lifecycle pipeline for AI agent personas."""

__version__ = "0.1.0"
