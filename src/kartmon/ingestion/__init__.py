"""Ingestion layer.

Turns raw live-timing socket frames into typed feed events. Nothing here
touches race state.
"""

__all__: list[str] = []
