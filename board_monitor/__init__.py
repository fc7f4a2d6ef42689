"""Task board monitor: watch a board section, report new tasks, claim eligible ones."""

__version__ = "1.0.0"
