"""Catalog sync service for marketplace-sourced reseller products."""

__version__ = "0.1.0"
