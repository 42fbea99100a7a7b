"""Stores, network configs, JSON logs, inspect objects and compose service parsing for a container CLI."""

__version__ = "0.1.0"