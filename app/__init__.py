"""Transit Ask: retrieval-augmented answers about city transit."""

__version__ = "1.0.0"
