"""icracy - an assembly of AI delegates that debates and votes on resolutions."""

__version__ = "0.1.0"
