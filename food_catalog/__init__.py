"""Food catalog store: typed entity access, contextual resolution, and bulk ingestion."""

__version__ = "1.0.0"
