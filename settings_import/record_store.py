"""
record_store.py — where imported bills, debts and audit logs end up

Three implementations share one small interface:

  MemoryRecordStore    process-local dicts, used by tests and previews
  JsonFileRecordStore  one JSON document on disk, used by the CLI by default
  RestRecordStore      a PostgREST-compatible endpoint over ``requests``

Every write returns the stored record including its ``id``. Failures raise
``RecordStoreError`` so the importer can count the row as skipped.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import uuid
from pathlib import Path
from typing import Any, Mapping

import requests

from settings_import.contracts import utc_now_iso

logger = logging.getLogger(__name__)

IMPORT_LOGS = "import_logs"
IMPORT_LOG_TIMESTAMP = "imported_at"
DEFAULT_TIMEOUT = 30.0


class RecordStoreError(RuntimeError):
    """A read or write against the record store failed."""


class RecordStore:
    def list_records(self, collection: str, user_id: str) -> list[dict[str, Any]]:
        raise NotImplementedError

    def insert(self, collection: str, payload: Mapping[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def update(self, collection: str, record_id: str, payload: Mapping[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def insert_import_log(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        return self.insert(IMPORT_LOGS, payload)

    def list_import_logs(self, user_id: str, limit: int = 20) -> list[dict[str, Any]]:
        """Most recent first."""
        logs = self.list_records(IMPORT_LOGS, user_id)
        logs.sort(key=lambda entry: str(entry.get(IMPORT_LOG_TIMESTAMP) or ""), reverse=True)
        return logs[:limit]


# ══════════════════════════════════════════════════════════════════════════════
# LOCAL STORES
# ══════════════════════════════════════════════════════════════════════════════

class MemoryRecordStore(RecordStore):
    def __init__(self, collections: Mapping[str, list[dict[str, Any]]] | None = None) -> None:
        self.collections: dict[str, list[dict[str, Any]]] = {
            name: [dict(record) for record in records] for name, records in (collections or {}).items()
        }

    def _collection(self, collection: str) -> list[dict[str, Any]]:
        return self.collections.setdefault(collection, [])

    def list_records(self, collection: str, user_id: str) -> list[dict[str, Any]]:
        return [dict(record) for record in self._collection(collection) if record.get("user_id") == user_id]

    def insert(self, collection: str, payload: Mapping[str, Any]) -> dict[str, Any]:
        record = dict(payload)
        record.setdefault("id", str(uuid.uuid4()))
        record.setdefault("created_at", utc_now_iso())
        self._collection(collection).append(record)
        return dict(record)

    def update(self, collection: str, record_id: str, payload: Mapping[str, Any]) -> dict[str, Any]:
        for record in self._collection(collection):
            if str(record.get("id")) == str(record_id):
                record.update(payload)
                record["id"] = record_id
                return dict(record)
        raise RecordStoreError(f"No {collection} record with id {record_id}")


class JsonFileRecordStore(MemoryRecordStore):
    """A ``MemoryRecordStore`` persisted to a JSON file after every write."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        super().__init__(self._read())

    def _read(self) -> dict[str, list[dict[str, Any]]]:
        if not self.path.exists():
            return {}
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise RecordStoreError(f"Record store is not valid JSON: {self.path}") from exc
        if not isinstance(payload, dict):
            raise RecordStoreError(f"Record store root must be a JSON object: {self.path}")
        return payload

    def _flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".records-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(self.collections, handle, indent=2, ensure_ascii=False, sort_keys=True)
            os.replace(tmp_name, self.path)
        except OSError as exc:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise RecordStoreError(f"Could not write record store {self.path}: {exc}") from exc

    def insert(self, collection: str, payload: Mapping[str, Any]) -> dict[str, Any]:
        record = super().insert(collection, payload)
        try:
            self._flush()
        except RecordStoreError:
            # Memory never holds a row the file lacks.
            self._collection(collection).pop()
            raise
        return record

    def update(self, collection: str, record_id: str, payload: Mapping[str, Any]) -> dict[str, Any]:
        records = self._collection(collection)
        snapshot = [dict(record) for record in records]
        record = super().update(collection, record_id, payload)
        try:
            self._flush()
        except RecordStoreError:
            records[:] = snapshot
            raise
        return record


# ══════════════════════════════════════════════════════════════════════════════
# REST STORE
# ══════════════════════════════════════════════════════════════════════════════

class RestRecordStore(RecordStore):
    """
    Talks to a PostgREST-style API (``/rest/v1/<collection>``).

    Filtering uses the ``column=eq.value`` query syntax and writes ask for
    ``Prefer: return=representation`` so the stored row comes back.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Content-Type": "application/json",
                "Accept": "application/json",
                "Prefer": "return=representation",
            }
        )
        if api_key:
            self.session.headers.update({"apikey": api_key, "Authorization": f"Bearer {api_key}"})

    def _url(self, collection: str) -> str:
        return f"{self.base_url}/rest/v1/{collection}"

    def _request(self, method: str, collection: str, **kwargs: Any) -> Any:
        url = self._url(collection)
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("%s %s failed: %s", method, url, exc)
            raise RecordStoreError(f"{method} {collection} failed: {exc}") from exc
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise RecordStoreError(f"{method} {collection} returned invalid JSON") from exc

    @staticmethod
    def _single(payload: Any, collection: str) -> dict[str, Any]:
        if isinstance(payload, list):
            if not payload:
                raise RecordStoreError(f"{collection} write returned no rows")
            payload = payload[0]
        if not isinstance(payload, dict):
            raise RecordStoreError(f"{collection} write returned an unexpected payload")
        return payload

    def list_records(self, collection: str, user_id: str) -> list[dict[str, Any]]:
        payload = self._request("GET", collection, params={"user_id": f"eq.{user_id}", "select": "*"})
        return list(payload or [])

    def insert(self, collection: str, payload: Mapping[str, Any]) -> dict[str, Any]:
        return self._single(self._request("POST", collection, json=dict(payload)), collection)

    def update(self, collection: str, record_id: str, payload: Mapping[str, Any]) -> dict[str, Any]:
        result = self._request("PATCH", collection, params={"id": f"eq.{record_id}"}, json=dict(payload))
        return self._single(result, collection)

    def list_import_logs(self, user_id: str, limit: int = 20) -> list[dict[str, Any]]:
        payload = self._request(
            "GET",
            IMPORT_LOGS,
            params={
                "user_id": f"eq.{user_id}",
                "select": "*",
                "order": f"{IMPORT_LOG_TIMESTAMP}.desc",
                "limit": str(limit),
            },
        )
        return list(payload or [])


def open_record_store(target: str, *, api_key: str | None = None, timeout: float = DEFAULT_TIMEOUT) -> RecordStore:
    """``memory``, an http(s) base URL, or a JSON file path."""
    if target == "memory":
        return MemoryRecordStore()
    if target.startswith(("http://", "https://")):
        return RestRecordStore(target, api_key, timeout=timeout)
    return JsonFileRecordStore(target)
