"""
Persistent data store for the CMMC tracker.

The store keeps an in-memory snapshot of every collection and mirrors it
to a key-value storage backend under one key per collection. It owns
serialization, corruption recovery, backup/restore, import/export and
reset.

Reads never raise on corrupted content: an unreadable collection is
logged and treated as empty. Writes always raise on failure so callers
can react to storage exhaustion. Every mutation rewrites the whole
collection (last writer wins); there is no revision check, so the store
must only be used by a single writer.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
from collections import Counter
from typing import Any, Dict, Iterable, List, Optional, Tuple

from cmmc_tracker.errors import NotFoundError, RestoreError, StorageError
from cmmc_tracker.models import (
    COLLECTION_MODELS,
    PROFILE_KEY,
    PROFILE_KEYS,
    SETTINGS_KEY,
    Asset,
    Record,
    new_id,
    stamp,
    to_json_ready,
    utcnow,
)
from cmmc_tracker.storage import KeyValueStorage

logger = logging.getLogger(__name__)

BACKUP_VERSION = 2
BACKUP_MARKERS = ("version", "backupId", "backupDate")

DEFAULT_SETTINGS: Dict[str, Any] = {
    "autoSave": True,
    "emailNotifications": False,
    "reportFormat": "detailed",
    "dataRetention": "12",
    "autoBackup": False,
    "backupFrequency": "weekly",
}

DEMO_MARKERS = ("demo", "sample")


class ImportResult:
    """Outcome of an import request."""

    def __init__(self):
        self.success = True
        self.imported = 0
        self.errors: List[str] = []
        self.warnings: List[str] = []

    def fail(self, message: str) -> "ImportResult":
        self.success = False
        self.imported = 0
        self.errors.append(message)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "imported": self.imported,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }


class ValidationResult:
    """Outcome of an integrity check over the stored snapshot."""

    def __init__(self):
        self.is_valid = True
        self.errors: List[str] = []
        self.warnings: List[str] = []

    def add_error(self, message: str) -> None:
        self.errors.append(message)
        self.is_valid = False


def _record_name(record: Record) -> str:
    return str(getattr(record, "name", "") or getattr(record, "title", ""))


class DataStore:
    """In-memory mirror of all persisted collections."""

    def __init__(self, storage: KeyValueStorage, key_prefix: str = "cmc_"):
        self.storage = storage
        self.key_prefix = key_prefix
        self._data: Optional[Dict[str, Any]] = None

    # ------------------------------------------------------------------
    # Snapshot load / save
    # ------------------------------------------------------------------
    def _key(self, name: str) -> str:
        return f"{self.key_prefix}{name}"

    @staticmethod
    def empty_snapshot() -> Dict[str, Any]:
        snapshot: Dict[str, Any] = {name: [] for name in COLLECTION_MODELS}
        snapshot[SETTINGS_KEY] = {}
        snapshot[PROFILE_KEY] = {}
        return snapshot

    def _read_key(self, name: str) -> Any:
        raw = self.storage.get_item(self._key(name))
        if raw is None:
            return None
        return json.loads(raw)

    def _load_collection(self, name: str) -> List[Record]:
        model = COLLECTION_MODELS[name]
        try:
            raw = self._read_key(name)
        except (StorageError, ValueError) as e:
            logger.error("Failed to load %s, falling back to empty collection: %s", name, e)
            return []
        if raw is None:
            return []
        if not isinstance(raw, list):
            logger.error("Stored %s is not a list, falling back to empty collection", name)
            return []
        records: List[Record] = []
        for index, item in enumerate(raw):
            try:
                records.append(model.from_dict(item))
            except (TypeError, ValueError) as e:
                logger.warning("Skipping unreadable %s record at index %d: %s", name, index, e)
        return records

    def _load_mapping(self, name: str) -> Dict[str, Any]:
        try:
            raw = self._read_key(name)
        except (StorageError, ValueError) as e:
            logger.error("Failed to load %s, using defaults: %s", name, e)
            return {}
        return raw if isinstance(raw, dict) else {}

    def _load(self) -> Dict[str, Any]:
        snapshot = {name: self._load_collection(name) for name in COLLECTION_MODELS}
        for name in PROFILE_KEYS:
            snapshot[name] = self._load_mapping(name)
        logger.debug("Loaded snapshot: %s", {k: len(v) for k, v in snapshot.items()})
        return snapshot

    def _snapshot(self) -> Dict[str, Any]:
        if self._data is None:
            self._data = self._load()
        return self._data

    def get_data(self) -> Dict[str, Any]:
        """Return a copy of the current snapshot, loading it on first use."""
        return copy.deepcopy(self._snapshot())

    def get_collection(self, name: str) -> List[Record]:
        if name not in COLLECTION_MODELS:
            raise KeyError(f"Unknown collection: {name}")
        return copy.deepcopy(self._snapshot()[name])

    def _normalize(self, name: str, records: Iterable[Any]) -> List[Record]:
        model = COLLECTION_MODELS[name]
        return [r if isinstance(r, model) else model.from_dict(r) for r in records]

    def _serialize(self, name: str, value: Any) -> str:
        if name in PROFILE_KEYS:
            return json.dumps(to_json_ready(value or {}))
        return json.dumps([r.to_dict() for r in value])

    def save_data(self, snapshot: Dict[str, Any]) -> None:
        """Write the given collections to storage in one batch.

        Collections missing from ``snapshot`` keep their current content.
        Storage errors (including quota exhaustion) propagate and leave the
        in-memory snapshot unchanged.
        """
        merged = dict(self._snapshot())
        for name, value in snapshot.items():
            if name in COLLECTION_MODELS:
                merged[name] = self._normalize(name, value)
            elif name in PROFILE_KEYS:
                merged[name] = dict(value or {})
            else:
                logger.warning("Ignoring unknown collection %r on save", name)
        payload = {self._key(name): self._serialize(name, merged[name]) for name in merged}
        try:
            self.storage.set_items(payload)
        except StorageError:
            logger.exception("Failed to save data")
            raise
        self._data = copy.deepcopy(merged)
        logger.debug("Saved %d collections", len(payload))

    def save_collection(self, name: str, records: Iterable[Any]) -> None:
        """Replace a single collection."""
        if name not in COLLECTION_MODELS and name not in PROFILE_KEYS:
            raise KeyError(f"Unknown collection: {name}")
        if name in PROFILE_KEYS:
            value: Any = dict(records)
        else:
            value = self._normalize(name, records)
        self._snapshot()
        try:
            self.storage.set_item(self._key(name), self._serialize(name, value))
        except StorageError:
            logger.exception("Failed to save %s", name)
            raise
        self._data[name] = copy.deepcopy(value)

    async def commit(self, name: str, records: Iterable[Any]) -> None:
        """Write a collection without blocking the event loop."""
        await asyncio.to_thread(self.save_collection, name, list(records))

    # ------------------------------------------------------------------
    # Backup / restore
    # ------------------------------------------------------------------
    def _export_payload(self) -> Dict[str, Any]:
        snapshot = self._snapshot()
        payload: Dict[str, Any] = {}
        for name in COLLECTION_MODELS:
            payload[name] = [r.to_dict() for r in snapshot[name]]
        for name in PROFILE_KEYS:
            payload[name] = to_json_ready(snapshot[name])
        return payload

    def create_backup(self) -> str:
        """Serialize every collection into a versioned backup document."""
        now = utcnow()
        backup = {
            "version": BACKUP_VERSION,
            "backupDate": now.isoformat(),
            "backupId": f"backup_{int(now.timestamp() * 1000)}",
        }
        backup.update(self._export_payload())
        logger.info("Created backup %s", backup["backupId"])
        return json.dumps(backup, indent=2, ensure_ascii=False)

    def restore_from_backup(self, text: str) -> None:
        """Replace every collection with the content of a backup.

        Raises:
            RestoreError: if ``text`` is not a JSON object carrying the
                backup markers or any collection in it is malformed.
        """
        try:
            payload = json.loads(text)
        except (TypeError, ValueError) as e:
            raise RestoreError(f"Backup is not valid JSON: {e}") from e
        if not isinstance(payload, dict):
            raise RestoreError("Backup must be a JSON object")
        missing = [m for m in BACKUP_MARKERS if m not in payload]
        if missing:
            raise RestoreError(f"Backup is missing required fields: {', '.join(missing)}")

        snapshot = self.empty_snapshot()
        for name, model in COLLECTION_MODELS.items():
            items = payload.get(name, [])
            if not isinstance(items, list):
                raise RestoreError(f"Backup collection '{name}' must be a list")
            try:
                snapshot[name] = [model.from_dict(item) for item in items]
            except (TypeError, ValueError) as e:
                raise RestoreError(f"Backup collection '{name}' has an invalid record: {e}") from e
            seen = set()
            for record in snapshot[name]:
                if record.id in seen:
                    raise RestoreError(f"Backup collection '{name}' has duplicate id '{record.id}'")
                seen.add(record.id)
        for name in PROFILE_KEYS:
            value = payload.get(name) or {}
            if not isinstance(value, dict):
                raise RestoreError(f"Backup entry '{name}' must be an object")
            snapshot[name] = value

        self.save_data(snapshot)
        logger.info("Restored backup %s", payload["backupId"])

    # ------------------------------------------------------------------
    # Import / export
    # ------------------------------------------------------------------
    def export_all_data(self) -> Dict[str, Any]:
        data = self._export_payload()
        data["version"] = BACKUP_VERSION
        data["exportedAt"] = utcnow().isoformat()
        return data

    @staticmethod
    def _parse_payload(payload: Any, result: ImportResult) -> Any:
        if isinstance(payload, (str, bytes)):
            try:
                return json.loads(payload)
            except ValueError as e:
                result.fail(f"Invalid JSON: {e}")
                return None
        return payload

    @staticmethod
    def _fill_defaults(item: Dict[str, Any], prefix: str) -> Dict[str, Any]:
        item = dict(item)
        now = utcnow().isoformat()
        if not item.get("id"):
            item["id"] = new_id(prefix)
        created = item.get("created_at") or item.get("createdAt") or now
        item["created_at"] = created
        item["updated_at"] = item.get("updated_at") or item.get("updatedAt") or created
        item.pop("createdAt", None)
        item.pop("updatedAt", None)
        return item

    def _convert_items(self, name: str, items: List[Any], result: ImportResult) -> List[Record]:
        model = COLLECTION_MODELS[name]
        records: List[Record] = []
        seen = set()
        for index, item in enumerate(items):
            if not isinstance(item, dict):
                result.errors.append(f"{name}[{index}]: expected an object")
                continue
            try:
                record = model.from_dict(self._fill_defaults(item, name[:3]))
            except (TypeError, ValueError) as e:
                result.errors.append(f"{name}[{index}]: {e}")
                continue
            # First occurrence of an id wins
            if record.id in seen:
                result.errors.append(f"{name}[{index}]: duplicate id '{record.id}'")
                continue
            seen.add(record.id)
            records.append(record)
        return records

    def import_all_data(self, payload: Any) -> ImportResult:
        """Import collections from a mapping or JSON text.

        Each list-valued collection in the payload replaces the stored
        collection. Unparseable payloads are rejected without touching the
        store; individual bad records are skipped and reported.
        """
        result = ImportResult()
        data = self._parse_payload(payload, result)
        if not result.success:
            return result
        if not isinstance(data, dict):
            return result.fail("Import payload must be an object of collections")

        updates: Dict[str, Any] = {}
        for name in COLLECTION_MODELS:
            if name not in data:
                continue
            items = data[name]
            if not isinstance(items, list):
                result.errors.append(f"{name}: expected a list, skipped")
                continue
            updates[name] = self._convert_items(name, items, result)
            result.imported += len(updates[name])
        for name in PROFILE_KEYS:
            if name not in data:
                continue
            if isinstance(data[name], dict):
                updates[name] = data[name]
            else:
                result.errors.append(f"{name}: expected an object, skipped")

        if updates:
            self.save_data(updates)
        logger.info("Imported %d records (%d errors)", result.imported, len(result.errors))
        return result

    def import_assets_with_validation(self, text: str) -> ImportResult:
        """Import assets from JSON text, validating each entry.

        Accepts either ``{"assets": [...]}`` or a bare list. Assets need a
        non-empty ``name``; an asset whose id already exists replaces it.
        """
        result = ImportResult()
        data = self._parse_payload(text, result)
        if not result.success:
            return result
        if isinstance(data, dict) and isinstance(data.get("assets"), list):
            items = data["assets"]
        elif isinstance(data, list):
            items = data
        else:
            return result.fail("Expected a list of assets or an object with an 'assets' list")

        valid: List[Asset] = []
        for index, item in enumerate(items):
            if not isinstance(item, dict):
                result.errors.append(f"Asset {index + 1}: expected an object")
                continue
            if not str(item.get("name") or "").strip():
                result.errors.append(f"Asset {index + 1}: name is required")
                continue
            try:
                valid.append(Asset.from_dict(self._fill_defaults(item, "asset")))
            except (TypeError, ValueError) as e:
                result.errors.append(f"Asset {index + 1}: {e}")

        if valid:
            assets = {a.id: a for a in self.get_collection("assets")}
            for asset in valid:
                assets[asset.id] = asset
            self.save_collection("assets", list(assets.values()))
        result.imported = len(valid)
        result.success = result.imported > 0 or not result.errors
        logger.info("Imported %d assets (%d rejected)", result.imported, len(result.errors))
        return result

    # ------------------------------------------------------------------
    # Reset
    # ------------------------------------------------------------------
    def reset_all_data(self, preserve_profile: bool = False) -> None:
        """Clear every collection, optionally keeping settings and profile."""
        snapshot = self.empty_snapshot()
        if preserve_profile:
            current = self._snapshot()
            for name in PROFILE_KEYS:
                snapshot[name] = dict(current[name])
        self.save_data(snapshot)
        logger.info("Reset all data (preserve_profile=%s)", preserve_profile)

    # ------------------------------------------------------------------
    # Settings / profile
    # ------------------------------------------------------------------
    def get_settings(self) -> Dict[str, Any]:
        settings = dict(DEFAULT_SETTINGS)
        settings.update(self._snapshot()[SETTINGS_KEY])
        return settings

    def save_settings(self, changes: Dict[str, Any]) -> Dict[str, Any]:
        settings = self.get_settings()
        settings.update(changes)
        self.save_collection(SETTINGS_KEY, settings)
        return settings

    def get_user_profile(self) -> Dict[str, Any]:
        return dict(self._snapshot()[PROFILE_KEY])

    def save_user_profile(self, profile: Dict[str, Any]) -> None:
        self.save_collection(PROFILE_KEY, profile)

    # ------------------------------------------------------------------
    # Assets
    # ------------------------------------------------------------------
    def get_assets(self) -> List[Asset]:
        return self.get_collection("assets")

    def save_asset(self, asset: Asset) -> Asset:
        assets = self.get_assets()
        if not asset.id:
            asset.id = new_id("asset")
        existing = next((a for a in assets if a.id == asset.id), None)
        stamp(asset, existing)
        if existing is None:
            assets.append(asset)
        else:
            assets = [asset if a.id == asset.id else a for a in assets]
        self.save_collection("assets", assets)
        return asset

    def delete_asset(self, asset_id: str) -> None:
        assets = self.get_assets()
        remaining = [a for a in assets if a.id != asset_id]
        if len(remaining) == len(assets):
            raise NotFoundError("assets", asset_id)
        self.save_collection("assets", remaining)

    def export_assets_with_classification(self) -> str:
        """Export assets with a per-classification summary as JSON text."""
        assets = self.get_assets()
        summary = Counter(a.classification for a in assets)
        export = {
            "exportDate": utcnow().isoformat(),
            "totalAssets": len(assets),
            "classificationSummary": dict(summary),
            "assets": [a.to_dict() for a in assets],
        }
        return json.dumps(export, indent=2, ensure_ascii=False)

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------
    def get_storage_usage(self) -> Dict[str, Any]:
        used = self.storage.usage()
        total = self.storage.quota_bytes or 0
        percentage = round(used / total * 100, 2) if total else 0.0
        return {"used": used, "total": total, "percentage": percentage}

    def validate_data(self) -> ValidationResult:
        """Check id uniqueness and timestamp ordering in every collection."""
        result = ValidationResult()
        snapshot = self._snapshot()
        for name in COLLECTION_MODELS:
            seen: Dict[str, int] = Counter(r.id for r in snapshot[name])
            for record_id, count in seen.items():
                if not record_id:
                    result.add_error(f"{name}: {count} record(s) without an id")
                elif count > 1:
                    result.add_error(f"{name}: duplicate id '{record_id}'")
            for record in snapshot[name]:
                if record.created_at and record.updated_at and record.updated_at < record.created_at:
                    result.add_error(f"{name}: '{record.id}' updated before it was created")
        return result

    def _demo_records(self) -> List[Tuple[str, str]]:
        matches = []
        for name, records in self._snapshot().items():
            if name not in COLLECTION_MODELS:
                continue
            for record in records:
                label = _record_name(record).lower()
                if any(marker in label for marker in DEMO_MARKERS):
                    matches.append((name, record.id))
        return matches

    def is_demo_data_loaded(self) -> bool:
        return bool(self._demo_records())

    def clear_demo_data(self) -> int:
        """Remove records whose name marks them as demo or sample data."""
        matches = self._demo_records()
        if not matches:
            return 0
        snapshot = self._snapshot()
        updates: Dict[str, List[Record]] = {}
        for name in {m[0] for m in matches}:
            ids = {record_id for n, record_id in matches if n == name}
            updates[name] = [r for r in snapshot[name] if r.id not in ids]
        self.save_data(updates)
        logger.info("Cleared %d demo records", len(matches))
        return len(matches)
