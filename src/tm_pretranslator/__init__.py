"""Translation memory retrieval and AI pretranslation pipeline."""

__version__ = "0.1.0"
