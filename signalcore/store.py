# signalcore/store.py
from __future__ import annotations

import json
import logging
import os
import tempfile
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from signalcore.config import settings
from signalcore.errors import StoreError
from signalcore.models import SignalDocument
from signalcore.schemas import SignalRecord

log = logging.getLogger("store")

DOCUMENT_EXT = ".md"


class SignalStore(Protocol):
    """Signal documents keyed by name."""

    def read(self, key: str) -> Dict[str, Any]: ...

    def write(self, key: str, payload: Dict[str, Any]) -> None: ...

    def list_keys(self, suffix: str) -> List[str]: ...


def signal_key(filename: str, suffix: Optional[str] = None) -> str:
    """'My Video.md' -> 'My Video.signal.json'"""
    suffix = suffix or settings.signal_suffix
    stem, ext = os.path.splitext(filename)
    if ext.lower() == DOCUMENT_EXT:
        filename = stem
    return f"{filename}{suffix}"


def filename_from_key(key: str, suffix: Optional[str] = None) -> str:
    suffix = suffix or settings.signal_suffix
    stem = key[: -len(suffix)] if key.endswith(suffix) else key
    return f"{stem}{DOCUMENT_EXT}"


class FileSignalStore:
    """One JSON file per document under ``root``."""

    def __init__(self, root: Optional[str] = None):
        self.root = root or settings.data_dir

    def _path(self, key: str) -> str:
        if not key or os.path.basename(key) != key or key in (".", ".."):
            raise StoreError(key, "invalid key")
        return os.path.join(self.root, key)

    def read(self, key: str) -> Dict[str, Any]:
        path = self._path(key)
        try:
            with open(path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError) as exc:
            raise StoreError(key, str(exc)) from exc
        if not isinstance(data, dict):
            raise StoreError(key, "payload is not an object")
        return data

    def write(self, key: str, payload: Dict[str, Any]) -> None:
        path = self._path(key)
        tmp_path = None
        try:
            os.makedirs(self.root, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=".tmp-", dir=self.root)
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(payload, fh, ensure_ascii=False, indent=2)
            # readers see the old or the new file, never half of one
            os.replace(tmp_path, path)
            tmp_path = None
        except (OSError, TypeError, ValueError) as exc:
            raise StoreError(key, str(exc)) from exc
        finally:
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)

    def list_keys(self, suffix: str) -> List[str]:
        if not os.path.isdir(self.root):
            return []
        return sorted(
            name
            for name in os.listdir(self.root)
            if name.endswith(suffix) and not name.startswith(".tmp-")
        )


class SqlSignalStore:
    """Signal documents as rows of ``signal_documents``."""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def read(self, key: str) -> Dict[str, Any]:
        with self.session_factory() as db:
            row = db.get(SignalDocument, key)
            if not row:
                raise StoreError(key, "not found")
            payload = row.payload
        if not isinstance(payload, dict):
            raise StoreError(key, "payload is not an object")
        return dict(payload)

    def write(self, key: str, payload: Dict[str, Any]) -> None:
        with self.session_factory() as db:
            try:
                row = db.get(SignalDocument, key)
                if row:
                    row.payload = dict(payload)
                else:
                    db.add(SignalDocument(key=key, payload=dict(payload)))
                db.commit()
            except Exception as exc:
                db.rollback()
                raise StoreError(key, str(exc)) from exc

    def list_keys(self, suffix: str) -> List[str]:
        with self.session_factory() as db:
            rows = db.execute(
                select(SignalDocument.key)
                .where(SignalDocument.key.endswith(suffix, autoescape=True))
                .order_by(SignalDocument.key)
            ).scalars().all()
        return list(rows)


def load_records(
    store: SignalStore,
    *,
    suffix: Optional[str] = None,
    files: Optional[Iterable[str]] = None,
    on_record: Optional[Callable[[int, int, str], None]] = None,
) -> List[SignalRecord]:
    """
    Read every signal document (or only those of ``files``). Unreadable or
    invalid documents are logged and skipped.
    """
    suffix = suffix or settings.signal_suffix
    keys = store.list_keys(suffix)
    if files is not None:
        wanted = {signal_key(f, suffix) for f in files}
        keys = [k for k in keys if k in wanted]

    records: List[SignalRecord] = []
    total = len(keys)
    for i, key in enumerate(keys, start=1):
        try:
            payload = store.read(key)
            records.append(SignalRecord.from_payload(payload, filename=filename_from_key(key, suffix)))
        except (StoreError, ValidationError) as exc:
            log.warning("signal_load_skipped key=%s error=%s", key, exc)
        if on_record:
            on_record(i, total, key)
    return records


def save_record(store: SignalStore, record: SignalRecord, *, suffix: Optional[str] = None) -> None:
    store.write(signal_key(record.filename, suffix), record.to_payload())
