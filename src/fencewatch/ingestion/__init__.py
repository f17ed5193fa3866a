"""Ingestion layer.

Receives GPS fixes from the queue and turns outside-the-boundary fixes into
violation records.
"""

from fencewatch.ingestion.consumer import FixConsumer

__all__ = ["FixConsumer"]
