from __future__ import annotations

from datetime import datetime
from threading import Lock
from typing import Dict, List, Optional, Sequence

import numpy as np

from .exceptions import NoFaceFound, PersistenceError
from .interfaces import FaceLocator, FeatureExtractor
from .logger import setup_logger
from .template_store import TemplateStore
from .types import Embedding, EnrolledIdentity, FaceBox


def embedding_distance(a: Embedding, b: Embedding) -> float:
    """Euclidean distance between two embeddings; 0.0 means identical."""
    return float(np.linalg.norm(np.asarray(a, dtype=np.float32) - np.asarray(b, dtype=np.float32)))


class Recognizer:
    """Holds enrolled identities and answers "is this face one of ours?".

    Identities are loaded from the store once, at construction. A store that
    cannot be read is logged and treated as empty, so recognition fails open.
    """

    def __init__(
        self,
        extractor: FeatureExtractor,
        store: Optional[TemplateStore] = None,
        match_threshold: float = 0.6,
    ):
        self.extractor = extractor
        self.store = store
        self.match_threshold = match_threshold
        self.logger = setup_logger(self.__class__.__name__)
        self._lock = Lock()
        self._identities: Dict[str, EnrolledIdentity] = {}
        self._load()

    def _load(self) -> None:
        if self.store is None:
            return
        try:
            identities = self.store.load()
        except PersistenceError as exc:
            self.logger.error("Could not load enrolled faces, continuing with none: %s", exc)
            return
        with self._lock:
            self._identities = identities
        self.logger.info("Loaded %d enrolled identities from disk", len(identities))

    def is_enrolled(self) -> bool:
        with self._lock:
            return bool(self._identities)

    @property
    def enrolled_count(self) -> int:
        with self._lock:
            return len(self._identities)

    def enrolled_labels(self) -> List[str]:
        with self._lock:
            return sorted(self._identities)

    def identity(self, label: str) -> Optional[EnrolledIdentity]:
        with self._lock:
            return self._identities.get(label)

    def best_distance(self, embedding: Embedding) -> float:
        """Smallest distance from ``embedding`` to any stored sample of any identity."""
        with self._lock:
            identities = list(self._identities.values())
        best = float("inf")
        for identity in identities:
            for stored in identity.embeddings:
                distance = embedding_distance(embedding, stored)
                if distance < best:
                    best = distance
        return best

    def matches(self, embedding: Embedding, threshold: Optional[float] = None) -> bool:
        limit = self.match_threshold if threshold is None else threshold
        return self.best_distance(embedding) < limit

    def is_owner(self, frame_bgr: np.ndarray, box: FaceBox, threshold: Optional[float] = None) -> bool:
        if not self.is_enrolled():
            return True
        embedding = self.extractor.extract(frame_bgr, box)
        return self.matches(embedding, threshold)

    def enroll_sample(self, frame_bgr: np.ndarray, locator: FaceLocator) -> Embedding:
        """Embed the primary face of ``frame_bgr``; raises ``NoFaceFound`` when there is none."""
        boxes = locator.locate(frame_bgr)
        if not boxes:
            raise NoFaceFound("No face in frame.")
        return self.extractor.extract(frame_bgr, boxes[0])

    def commit_identity(self, label: str, embeddings: Sequence[Embedding]) -> EnrolledIdentity:
        now = datetime.now()
        with self._lock:
            previous = self._identities.get(label)
            identity = EnrolledIdentity(
                label=label,
                embeddings=tuple(np.asarray(vector, dtype=np.float32) for vector in embeddings),
                created_at=previous.created_at if previous else now,
                updated_at=now,
            )
            self._identities[label] = identity
            snapshot = dict(self._identities)
        self._persist(snapshot)
        self.logger.info(
            "Enrollment complete for '%s' (%d samples). Total enrolled: %d",
            label,
            len(identity.embeddings),
            len(snapshot),
        )
        return identity

    def reset_one(self, label: str) -> bool:
        with self._lock:
            removed = self._identities.pop(label, None)
            snapshot = dict(self._identities)
        if removed is None:
            return False
        self._persist(snapshot)
        self.logger.info("Enrollment reset for '%s'", label)
        return True

    def reset_all(self) -> bool:
        """Forget every identity. Returns False if the on-disk copy could not be cleared."""
        with self._lock:
            self._identities.clear()
        durable = self._persist({})
        self.logger.info("All enrollments reset")
        return durable

    def _persist(self, snapshot: Dict[str, EnrolledIdentity]) -> bool:
        if self.store is None:
            return True
        try:
            self.store.save_all(snapshot)
        except PersistenceError as exc:
            # In-memory identities stay authoritative until the next good write.
            self.logger.error("Failed to save enrolled faces: %s", exc)
            return False
        return True
