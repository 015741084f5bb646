"""Bulk generation job orchestration for services without a batch API."""

__version__ = "0.1.0"
