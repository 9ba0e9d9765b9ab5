"""
Submission store

One document per observer id, last write wins. Rings are stored as lists
of {"lng": .., "lat": ..} records because some document stores reject
nested arrays; decode_ring turns them back into (lng, lat) pairs for the
aggregator.

Document layout:
    {
        "eastPolygon": [{"lng": -79.4, "lat": 43.6}, ...],
        "westPolygon": [...],
        "timestamp": "2024-05-01T12:00:00+00:00"
    }

Durability is not a goal here; the JSON file is a convenience for the CLI
and the API.
"""
from __future__ import annotations

import json
import logging
import os
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from . import config
from .geometry_utils import Ring, close_ring
from .splitter import SplitResult

logger = logging.getLogger(__name__)


def encode_ring(ring: Iterable) -> List[Dict[str, float]]:
    return [{"lng": float(p[0]), "lat": float(p[1])} for p in ring]


def decode_ring(records: Iterable[Mapping[str, Any]]) -> Ring:
    return [(float(r["lng"]), float(r["lat"])) for r in records]


def new_observer_id() -> str:
    """Stable per-installation identifier for a new observer."""
    return uuid.uuid4().hex


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class SubmissionDocument:
    east_polygon: Ring
    west_polygon: Ring
    timestamp: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "eastPolygon": encode_ring(self.east_polygon),
            "westPolygon": encode_ring(self.west_polygon),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SubmissionDocument":
        return cls(
            east_polygon=decode_ring(data["eastPolygon"]),
            west_polygon=decode_ring(data["westPolygon"]),
            timestamp=str(data.get("timestamp") or ""),
        )

    def to_ring_pair(self) -> Dict[str, Ring]:
        return {config.SIDE_EAST: list(self.east_polygon), config.SIDE_WEST: list(self.west_polygon)}


class SubmissionStore:
    """In-memory, thread-safe, last-write-wins map of observer id -> document."""

    def __init__(self, path: Optional[str] = None):
        self.path = path
        self._docs: Dict[str, SubmissionDocument] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._docs)

    def __contains__(self, observer_id: str) -> bool:
        with self._lock:
            return observer_id in self._docs

    def put(
        self,
        observer_id: str,
        split: Union[SplitResult, Mapping[str, Iterable]],
        timestamp: Optional[str] = None,
    ) -> SubmissionDocument:
        """Store (or replace) an observer's split. The timestamp is assigned here."""
        if not observer_id:
            raise ValueError("observer_id is required")
        if isinstance(split, SplitResult):
            east, west = split.east_ring, split.west_ring
        else:
            east = close_ring(split[config.SIDE_EAST])
            west = close_ring(split[config.SIDE_WEST])

        doc = SubmissionDocument(east_polygon=east, west_polygon=west, timestamp=timestamp or _now())
        with self._lock:
            replaced = observer_id in self._docs
            self._docs[observer_id] = doc
        logger.info(f"{'Replaced' if replaced else 'Stored'} submission for observer {observer_id}")
        return doc

    def get(self, observer_id: str) -> Optional[SubmissionDocument]:
        with self._lock:
            return self._docs.get(observer_id)

    def delete(self, observer_id: str) -> bool:
        with self._lock:
            return self._docs.pop(observer_id, None) is not None

    def ring_pairs(self) -> List[Dict[str, Ring]]:
        """Decoded rings of every submission, in observer-id order."""
        with self._lock:
            docs = [self._docs[k] for k in sorted(self._docs)]
        return [d.to_ring_pair() for d in docs]

    def documents(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return {k: v.to_dict() for k, v in self._docs.items()}

    def save(self, path: Optional[str] = None) -> str:
        target = path or self.path
        if not target:
            raise ValueError("No store path configured")
        os.makedirs(os.path.dirname(target) or ".", exist_ok=True)
        tmp_path = target + ".tmp"
        with open(tmp_path, "w", encoding="utf-8") as fh:
            json.dump(self.documents(), fh)
        os.replace(tmp_path, target)
        logger.info(f"Wrote {len(self)} submissions to {target}")
        return target

    @classmethod
    def load(cls, path: str) -> "SubmissionStore":
        """Load a store from JSON. A missing file gives an empty store."""
        store = cls(path)
        if not os.path.exists(path):
            logger.info(f"No submission store at {path}; starting empty")
            return store

        with open(path, "r", encoding="utf-8") as fh:
            try:
                raw = json.load(fh)
            except ValueError as exc:
                raise ValueError(f"Submission store {path} is not valid JSON: {exc}") from exc
        if not isinstance(raw, Mapping):
            raise ValueError(
                f"Submission store {path} must hold an object of observer id -> document, "
                f"got {type(raw).__name__}"
            )

        bad = 0
        for observer_id, data in raw.items():
            try:
                store._docs[observer_id] = SubmissionDocument.from_dict(data)
            except (KeyError, TypeError, ValueError) as exc:
                bad += 1
                logger.warning(f"Dropping unreadable submission {observer_id}: {exc}")
        logger.info(f"Loaded {len(store)} submissions from {path}" + (f" ({bad} unreadable)" if bad else ""))
        return store
