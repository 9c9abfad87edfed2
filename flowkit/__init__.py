"""Serializable flow graphs of pluggable nodes and an async topological engine that runs them."""

__version__ = "0.1.0"