"""
mapping_store.py — persisted column mappings

Confirmed mappings are cached per user and per header signature so the next
import of a structurally identical sheet skips the mapping step.

Keys look like ``excel-import-mapping-v2:<user_id>:<header,header,...>``.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Sequence

from settings_import.fields import (
    TargetField,
    auto_detect_mapping,
    header_signature,
    sanitise_mapping,
)

MAPPING_NAMESPACE = "excel-import-mapping-v2"

MAPPING_SOURCE_SAVED = "saved"
MAPPING_SOURCE_AUTO = "auto"


class MappingStore:
    """Key-value interface for saved mappings."""

    def get(self, key: str) -> dict[str, str] | None:
        raise NotImplementedError

    def put(self, key: str, mapping: dict[str, str]) -> None:
        raise NotImplementedError


class MemoryMappingStore(MappingStore):
    def __init__(self) -> None:
        self._entries: dict[str, dict[str, str]] = {}

    def get(self, key: str) -> dict[str, str] | None:
        entry = self._entries.get(key)
        return dict(entry) if entry is not None else None

    def put(self, key: str, mapping: dict[str, str]) -> None:
        self._entries[key] = dict(mapping)

    def keys(self) -> list[str]:
        return list(self._entries)


class JsonFileMappingStore(MappingStore):
    """All mappings in one JSON object on disk, rewritten atomically on put."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def _load(self) -> dict[str, dict[str, str]]:
        if not self.path.exists():
            return {}
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ValueError(f"Mapping cache is not valid JSON: {self.path}") from exc
        if not isinstance(payload, dict):
            raise ValueError(f"Mapping cache root must be a JSON object: {self.path}")
        return payload

    def get(self, key: str) -> dict[str, str] | None:
        entry = self._load().get(key)
        return dict(entry) if isinstance(entry, dict) else None

    def put(self, key: str, mapping: dict[str, str]) -> None:
        payload = self._load()
        payload[key] = dict(mapping)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".mappings-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2, ensure_ascii=False, sort_keys=True)
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise


def mapping_cache_key(user_id: str, headers: Sequence[str]) -> str:
    if not user_id:
        raise ValueError("A user id is required to scope saved mappings.")
    return f"{MAPPING_NAMESPACE}:{user_id}:{header_signature(headers)}"


class MappingCache:
    """A ``MappingStore`` bound to one user."""

    def __init__(self, store: MappingStore, user_id: str) -> None:
        self.store = store
        self.user_id = user_id

    def load(self, headers: Sequence[str]) -> dict[str, str] | None:
        return self.store.get(mapping_cache_key(self.user_id, headers))

    def save(self, headers: Sequence[str], mapping: dict[str, str]) -> None:
        self.store.put(mapping_cache_key(self.user_id, headers), mapping)


def resolve_mapping(
    headers: Sequence[str],
    target_fields: Sequence[TargetField],
    saved: dict[str, str] | None,
) -> tuple[dict[str, str], str]:
    """Prefer a saved mapping (fitted to the headers); otherwise auto-detect."""
    if saved:
        return sanitise_mapping(saved, headers, target_fields), MAPPING_SOURCE_SAVED
    return auto_detect_mapping(headers, target_fields), MAPPING_SOURCE_AUTO
