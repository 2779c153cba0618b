"""Resolver chain, upstream clients, query logging and statistics for a blocking DNS proxy."""

__version__ = "0.1.0"