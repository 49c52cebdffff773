"""Inkstream: durable document-processing workflows."""

__version__ = "0.1.0"
