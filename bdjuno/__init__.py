"""Indexing modules, records and helpers that store Cosmos SDK chain data through a caller-supplied database."""

__version__ = "3.0.0"