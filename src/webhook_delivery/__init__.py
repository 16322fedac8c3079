"""Reliable webhook delivery: signing, retries with backoff, dead-lettering."""

__version__ = "0.1.0"
