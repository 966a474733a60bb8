"""Durable storage gateways for the ritual engine."""

from .gateway import (
    ACHIEVEMENTS_KEY,
    FilePersistenceGateway,
    InMemoryPersistenceGateway,
    PersistenceGateway,
    progress_key,
    sessions_key,
)

__all__ = [
    "ACHIEVEMENTS_KEY",
    "FilePersistenceGateway",
    "InMemoryPersistenceGateway",
    "PersistenceGateway",
    "progress_key",
    "sessions_key",
]
