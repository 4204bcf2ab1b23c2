"""
Filesystem snapshot store.

Layout:
    <root>/<environment_id>/snapshots/<snapshot_id>.json
    <root>/<environment_id>/snapshots/<snapshot_id>.sig   (optional)
    <root>/<environment_id>/latest.json

Every file is written to a temp file in the same directory, fsynced and
renamed into place. The snapshot artifact is durable before latest.json
is replaced, so a reader following the pointer always finds the artifact.
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from ._types import as_utc
from .errors import SnapshotStoreError
from .models import AggregateSnapshot, SnapshotRecord
from .signing import SnapshotSigner, sha256_hex, verify_signature

logger = logging.getLogger(__name__)

LATEST_POINTER = "latest.json"
SNAPSHOT_DIR = "snapshots"
ID_TIME_FORMAT = "%Y%m%dT%H%M%S%fZ"

_SAFE_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


class LatestPointer(BaseModel):
    """Contents of latest.json."""

    model_config = ConfigDict(frozen=True)

    snapshot_id: str
    environment_id: str
    created_at: datetime
    content_sha256: str
    signed: bool = False

    @field_validator("created_at")
    @classmethod
    def created_at_utc(cls, v: datetime) -> datetime:
        return as_utc(v)


def canonical_json(snapshot: AggregateSnapshot) -> bytes:
    """Deterministic serialization: sorted keys, no whitespace."""
    return json.dumps(
        snapshot.model_dump(mode="json"),
        sort_keys=True,
        separators=(",", ":"),
    ).encode("utf-8")


def make_snapshot_id(created_at: datetime, content_sha256: str) -> str:
    stamp = as_utc(created_at).strftime(ID_TIME_FORMAT)
    return f"{stamp}-{content_sha256[:12]}"


def atomic_write(path: Path, data: bytes) -> None:
    """Write data to path via temp file + fsync + rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class SnapshotStore:
    """Persist AggregateSnapshots per environment and track the latest one."""

    def __init__(self, root: Path, signer: Optional[SnapshotSigner] = None):
        self.root = Path(root)
        self.signer = signer

    def _env_dir(self, environment_id: str) -> Path:
        if not _SAFE_NAME.match(environment_id):
            raise SnapshotStoreError(f"Unsafe environment id: {environment_id!r}")
        return self.root / environment_id

    def _snapshot_path(self, environment_id: str, snapshot_id: str) -> Path:
        if not _SAFE_NAME.match(snapshot_id):
            raise SnapshotStoreError(f"Unsafe snapshot id: {snapshot_id!r}")
        return self._env_dir(environment_id) / SNAPSHOT_DIR / f"{snapshot_id}.json"

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def write(self, snapshot: AggregateSnapshot) -> SnapshotRecord:
        """
        Persist snapshot and advance the latest pointer.

        Writing the same snapshot twice returns the same id and leaves the
        existing artifact untouched. The pointer only moves forward in
        created_at order.

        Raises:
            SnapshotStoreError: If the storage is not writable
        """
        data = canonical_json(snapshot)
        content_sha256 = sha256_hex(data)
        snapshot_id = make_snapshot_id(snapshot.created_at, content_sha256)
        path = self._snapshot_path(snapshot.environment_id, snapshot_id)
        sig_path = path.with_suffix(".sig")

        try:
            if path.exists() and path.read_bytes() == data:
                logger.debug(f"Snapshot {snapshot_id} already stored")
            else:
                atomic_write(path, data)

            signed = sig_path.exists()
            if self.signer is not None and not signed:
                atomic_write(sig_path, self.signer.sign(data).hex().encode("ascii"))
                signed = True

            pointer = LatestPointer(
                snapshot_id=snapshot_id,
                environment_id=snapshot.environment_id,
                created_at=snapshot.created_at,
                content_sha256=content_sha256,
                signed=signed,
            )
            self._advance_pointer(pointer)

        except OSError as e:
            raise SnapshotStoreError(f"Failed to write snapshot {snapshot_id}: {e}") from e

        logger.info(f"Stored snapshot {snapshot_id} for {snapshot.environment_id}")

        return SnapshotRecord(
            snapshot_id=snapshot_id,
            environment_id=snapshot.environment_id,
            created_at=snapshot.created_at,
            content_sha256=content_sha256,
            signed=signed,
            snapshot=snapshot,
        )

    def _advance_pointer(self, pointer: LatestPointer) -> None:
        current = self._read_pointer(pointer.environment_id)
        if current is not None and current.created_at > pointer.created_at:
            logger.info(
                f"Latest for {pointer.environment_id} is newer ({current.snapshot_id}); "
                f"pointer not moved"
            )
            return

        pointer_path = self._env_dir(pointer.environment_id) / LATEST_POINTER
        atomic_write(pointer_path, pointer.model_dump_json(indent=2).encode("utf-8"))

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def _read_pointer(self, environment_id: str) -> Optional[LatestPointer]:
        pointer_path = self._env_dir(environment_id) / LATEST_POINTER
        if not pointer_path.exists():
            return None
        try:
            return LatestPointer.model_validate_json(pointer_path.read_bytes())
        except (OSError, ValidationError) as e:
            logger.warning(f"Unreadable latest pointer {pointer_path}: {e}")
            return None

    def read_record(self, environment_id: str, snapshot_id: str) -> Optional[SnapshotRecord]:
        """Load one stored snapshot with its identity, or None if absent or corrupt."""
        path = self._snapshot_path(environment_id, snapshot_id)
        if not path.exists():
            return None

        try:
            data = path.read_bytes()
            snapshot = AggregateSnapshot.model_validate_json(data)
        except (OSError, ValidationError) as e:
            logger.warning(f"Unreadable snapshot {path}: {e}")
            return None

        content_sha256 = sha256_hex(data)
        if not snapshot_id.endswith(content_sha256[:12]):
            logger.warning(f"Snapshot {snapshot_id} content does not match its id")
            return None

        return SnapshotRecord(
            snapshot_id=snapshot_id,
            environment_id=environment_id,
            created_at=snapshot.created_at,
            content_sha256=content_sha256,
            signed=path.with_suffix(".sig").exists(),
            snapshot=snapshot,
        )

    def read(self, environment_id: str, snapshot_id: str) -> Optional[AggregateSnapshot]:
        record = self.read_record(environment_id, snapshot_id)
        return record.snapshot if record else None

    def latest_record(self, environment_id: str) -> Optional[SnapshotRecord]:
        pointer = self._read_pointer(environment_id)
        if pointer is None:
            return None
        return self.read_record(environment_id, pointer.snapshot_id)

    def read_latest(self, environment_id: str) -> Optional[AggregateSnapshot]:
        """The snapshot the latest pointer names, or None if nothing was written yet."""
        record = self.latest_record(environment_id)
        return record.snapshot if record else None

    def list_snapshots(self, environment_id: str) -> List[str]:
        """Snapshot ids for an environment, newest first."""
        snapshot_dir = self._env_dir(environment_id) / SNAPSHOT_DIR
        if not snapshot_dir.exists():
            return []
        return sorted((p.stem for p in snapshot_dir.glob("*.json")), reverse=True)

    def verify(
        self,
        environment_id: str,
        snapshot_id: str,
        public_key: Union[bytes, str],
    ) -> bool:
        """Check the detached signature of a stored snapshot. False if unsigned."""
        path = self._snapshot_path(environment_id, snapshot_id)
        sig_path = path.with_suffix(".sig")
        if not path.exists() or not sig_path.exists():
            return False

        try:
            signature = bytes.fromhex(sig_path.read_text().strip())
        except ValueError:
            logger.warning(f"Malformed signature file {sig_path}")
            return False

        return verify_signature(public_key, path.read_bytes(), signature)
