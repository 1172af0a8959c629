"""Custom exception hierarchy for kartmon."""

from __future__ import annotations


class KartmonError(Exception):
    """Base exception for all kartmon errors."""


class KartmonConfigError(KartmonError):
    """Invalid or missing configuration."""


class KartmonFeedError(KartmonError):
    """Live-timing feed failure (connect, handshake, closed stream)."""

    def __init__(
        self,
        message: str,
        *,
        url: str = "",
        track_id: str = "",
    ) -> None:
        self.url = url
        self.track_id = track_id
        super().__init__(message)


class KartmonPersistenceError(KartmonError):
    """Storage backend rejected or failed an upsert.

    The supervisors never let this escape the persistence dispatcher: live
    state is kept even when a durable write is lost.
    """

    def __init__(
        self,
        message: str,
        *,
        track_id: str = "",
        kart_number: str = "",
    ) -> None:
        self.track_id = track_id
        self.kart_number = kart_number
        super().__init__(message)
