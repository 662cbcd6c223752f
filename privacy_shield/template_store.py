from __future__ import annotations

import os
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Dict, List

import numpy as np
from cryptography.fernet import Fernet, InvalidToken

from .exceptions import PersistenceLoadFailed, PersistenceWriteFailed
from .types import EnrolledIdentity

SCHEMA_VERSION = 1


def _restrict_permissions(path: Path) -> None:
    if os.name != "nt" and path.exists():
        os.chmod(path, 0o600)


class EmbeddingCipher:
    def __init__(self, key_path: Path):
        self.key_path = Path(key_path)
        self.key_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self.fernet = Fernet(self._load_or_create_key())
        except (OSError, ValueError) as exc:
            raise PersistenceLoadFailed(f"Embedding key is unusable: {exc}") from exc

    def _load_or_create_key(self) -> bytes:
        env_key = os.getenv("PRIVACY_SHIELD_EMBED_KEY")
        if env_key:
            return env_key.encode("utf-8")
        if self.key_path.exists():
            return self.key_path.read_bytes().strip()

        key = Fernet.generate_key()
        fd = os.open(self.key_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        with os.fdopen(fd, "wb") as handle:
            handle.write(key)
        return key

    def encrypt(self, embedding: np.ndarray) -> bytes:
        raw = np.asarray(embedding, dtype="<f4").tobytes()
        return self.fernet.encrypt(raw)

    def decrypt(self, blob: bytes, dim: int) -> np.ndarray:
        raw = self.fernet.decrypt(blob)
        vector = np.frombuffer(raw, dtype="<f4", count=dim)
        return vector.astype(np.float32)


class TemplateStore:
    """Encrypted sqlite store of enrolled identities.

    Every save rewrites the whole identity set inside one transaction, so a
    failed write leaves the previous set in place.
    """

    def __init__(self, db_path: Path, key_path: Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.cipher = EmbeddingCipher(key_path=key_path)
        self._initialize()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _initialize(self) -> None:
        try:
            with self._connect() as conn:
                conn.executescript(
                    """
                    CREATE TABLE IF NOT EXISTS schema_meta (
                        key TEXT PRIMARY KEY,
                        value TEXT NOT NULL
                    );

                    CREATE TABLE IF NOT EXISTS identity_embeddings (
                        label TEXT NOT NULL,
                        sample_index INTEGER NOT NULL,
                        embedding_dim INTEGER NOT NULL,
                        embedding_encrypted BLOB NOT NULL,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL,
                        PRIMARY KEY (label, sample_index)
                    );
                    """
                )
                conn.execute(
                    "INSERT OR IGNORE INTO schema_meta (key, value) VALUES ('version', ?)",
                    (str(SCHEMA_VERSION),),
                )
        except sqlite3.Error as exc:
            raise PersistenceLoadFailed(f"Failed to initialize template store: {exc}") from exc
        _restrict_permissions(self.db_path)

    def schema_version(self) -> int:
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM schema_meta WHERE key = 'version'").fetchone()
        return int(row["value"]) if row else 0

    def load(self) -> Dict[str, EnrolledIdentity]:
        try:
            version = self.schema_version()
            if version != SCHEMA_VERSION:
                raise PersistenceLoadFailed(f"Unsupported template schema version {version}.")
            with self._connect() as conn:
                rows = conn.execute(
                    """
                    SELECT label, sample_index, embedding_dim, embedding_encrypted, created_at, updated_at
                    FROM identity_embeddings
                    ORDER BY label ASC, sample_index ASC
                    """
                ).fetchall()
        except sqlite3.Error as exc:
            raise PersistenceLoadFailed(f"Failed to read enrolled identities: {exc}") from exc

        grouped: Dict[str, List[sqlite3.Row]] = {}
        for row in rows:
            grouped.setdefault(row["label"], []).append(row)

        identities: Dict[str, EnrolledIdentity] = {}
        for label, label_rows in grouped.items():
            try:
                vectors = tuple(
                    self.cipher.decrypt(row["embedding_encrypted"], int(row["embedding_dim"]))
                    for row in label_rows
                )
            except (InvalidToken, ValueError) as exc:
                raise PersistenceLoadFailed(f"Stored embeddings for '{label}' cannot be decrypted.") from exc
            try:
                created_at = datetime.fromisoformat(label_rows[0]["created_at"])
                updated_at = datetime.fromisoformat(label_rows[0]["updated_at"])
            except (TypeError, ValueError) as exc:
                raise PersistenceLoadFailed(f"Stored timestamps for '{label}' are invalid.") from exc
            identities[label] = EnrolledIdentity(
                label=label,
                embeddings=vectors,
                created_at=created_at,
                updated_at=updated_at,
            )
        return identities

    def save_all(self, identities: Dict[str, EnrolledIdentity]) -> None:
        rows = []
        for identity in identities.values():
            created = identity.created_at.isoformat(timespec="seconds")
            updated = identity.updated_at.isoformat(timespec="seconds")
            for index, embedding in enumerate(identity.embeddings):
                vector = np.asarray(embedding, dtype=np.float32)
                if vector.ndim != 1:
                    raise PersistenceWriteFailed(f"Embedding for '{identity.label}' must be a 1D vector.")
                rows.append(
                    (identity.label, index, int(vector.size), self.cipher.encrypt(vector), created, updated)
                )

        try:
            with self._connect() as conn:
                conn.execute("DELETE FROM identity_embeddings")
                conn.executemany(
                    """
                    INSERT INTO identity_embeddings (
                        label, sample_index, embedding_dim, embedding_encrypted, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    rows,
                )
        except sqlite3.Error as exc:
            raise PersistenceWriteFailed(f"Failed to save enrolled identities: {exc}") from exc

    def clear(self) -> None:
        self.save_all({})
