"""Mirror a GitHub repository's git objects and issue tracker into SQLite."""

__version__ = "0.1.0"
