"""Abstract vector index interface."""

from __future__ import annotations

import dataclasses
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional


@dataclasses.dataclass
class VectorPoint:
    id: str
    vector: List[float]
    payload: Dict[str, Any] = dataclasses.field(default_factory=dict)


@dataclasses.dataclass
class VectorHit:
    id: str
    score: float
    payload: Dict[str, Any] = dataclasses.field(default_factory=dict)


class VectorIndex(ABC):
    """Abstract base class for vector index backends."""

    @abstractmethod
    def ensure_collection(self, name: str, dimension: int) -> None:
        """Create the collection if it does not exist yet."""
        pass

    @abstractmethod
    def upsert(self, name: str, points: List[VectorPoint]) -> None:
        """Insert or replace points."""
        pass

    @abstractmethod
    def search(
        self,
        name: str,
        vector: List[float],
        limit: int,
        repository_id: Optional[str] = None,
    ) -> List[VectorHit]:
        """Nearest neighbours by cosine similarity, best first.

        Raises:
            CollectionMissingError: If the collection does not exist
            StorageError: If the query itself fails
        """
        pass

    @abstractmethod
    def delete(self, name: str, ids: List[str]) -> None:
        """Delete points by id."""
        pass

    def count(self, name: str) -> int:
        """Count points in the collection (0 when it is missing)."""
        return 0
