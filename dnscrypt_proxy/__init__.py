"""Parts of a filtering, caching DNS proxy: query plugins, pattern matching and DNS helpers."""

__version__ = "2.1.6"