"""repolens: retrieval-augmented question answering over source repositories."""

__version__ = "0.1.0"
