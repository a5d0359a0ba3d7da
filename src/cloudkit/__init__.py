"""Async client library for object storage, streams, key-value, metrics, compute and functions."""

__version__ = "0.1.0"
