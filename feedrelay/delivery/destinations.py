"""Destination resolution."""

from __future__ import annotations

from typing import Iterable, Protocol

from .models import CandidateArticle, Destination


class DestinationResolver(Protocol):
    async def resolve(self, candidate: CandidateArticle) -> Destination | None:
        """Return the live destination for ``candidate``, or None if it is gone."""


class StaticDestinationResolver:
    """Resolves against a known set of destination ids.

    Destinations are registered up front from the schedules file and can be
    removed at runtime, e.g. after the API reports them missing.
    """

    def __init__(self, destinations: Iterable[Destination] = ()) -> None:
        self._destinations: dict[str, Destination] = {d.id: d for d in destinations}

    def add(self, destination: Destination) -> None:
        self._destinations[destination.id] = destination

    def remove(self, destination_id: str) -> None:
        self._destinations.pop(destination_id, None)

    def __contains__(self, destination_id: object) -> bool:
        return destination_id in self._destinations

    async def resolve(self, candidate: CandidateArticle) -> Destination | None:
        return self._destinations.get(candidate.destination.id)
