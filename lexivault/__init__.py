"""LexiVault: scanned document recognition, indexing and hybrid search."""

__version__ = "1.0.0"
