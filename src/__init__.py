"""fundmatch — relevance classification and caching for funding programs."""

from fundmatch.version import __version__

__all__ = ["__version__"]
