import json
import os
import tempfile
import threading
from typing import Dict, List, Optional


class RecordStoreError(Exception):
    status_code = 400


class CollectionNotFound(RecordStoreError):
    status_code = 404


class RecordNotFound(RecordStoreError):
    status_code = 404


class DatasetError(RecordStoreError):
    status_code = 500


class RecordConflict(RecordStoreError):
    status_code = 409


class JsonRecordStore:
    """Named collections of records kept in a single JSON file.

    The file is re-read on every call so edits made by hand show up without a
    restart. Writes hold a process-wide lock and replace the file atomically.
    """

    def __init__(self, path: str):
        self.path = path
        self._lock = threading.RLock()

    def _load(self) -> Dict[str, object]:
        try:
            with open(self.path, "r", encoding="utf-8") as handle:
                data = json.load(handle)
        except FileNotFoundError:
            return {}
        except ValueError as exc:
            raise DatasetError(f"{self.path} is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise DatasetError(f"{self.path} must contain a JSON object.")
        return data

    def _save(self, data: Dict[str, object]) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle, indent=2, ensure_ascii=False)
            os.replace(temp_path, self.path)
        except BaseException:
            if os.path.exists(temp_path):
                os.remove(temp_path)
            raise

    @staticmethod
    def _collection(data: Dict[str, object], name: str) -> List[Dict]:
        records = data.get(name)
        if not isinstance(records, list):
            raise CollectionNotFound(f"Unknown collection '{name}'.")
        return records

    @staticmethod
    def _find_index(records: List[Dict], record_id: str) -> Optional[int]:
        for index, record in enumerate(records):
            if isinstance(record, dict) and str(record.get("id")) == str(record_id):
                return index
        return None

    @staticmethod
    def _next_id(records: List[Dict]) -> int:
        numeric_ids = []
        for record in records:
            if not isinstance(record, dict):
                continue
            try:
                numeric_ids.append(int(record.get("id")))
            except (TypeError, ValueError):
                continue
        return max(numeric_ids, default=0) + 1

    def collections(self) -> List[str]:
        with self._lock:
            data = self._load()
        return sorted(name for name, value in data.items() if isinstance(value, list))

    def list(self, collection: str, filters: Optional[Dict[str, str]] = None) -> List[Dict]:
        with self._lock:
            records = self._collection(self._load(), collection)
        filters = filters or {}
        return [
            record
            for record in records
            if isinstance(record, dict)
            and all(str(record.get(field)) == value for field, value in filters.items())
        ]

    def get(self, collection: str, record_id: str) -> Dict:
        with self._lock:
            records = self._collection(self._load(), collection)
        index = self._find_index(records, record_id)
        if index is None:
            raise RecordNotFound(f"No record '{record_id}' in '{collection}'.")
        return records[index]

    def create(self, collection: str, payload: Dict) -> Dict:
        if not isinstance(payload, dict):
            raise RecordStoreError("Record body must be a JSON object.")
        with self._lock:
            data = self._load()
            records = self._collection(data, collection)
            record = dict(payload)
            if record.get("id") in (None, ""):
                record["id"] = self._next_id(records)
            elif self._find_index(records, record["id"]) is not None:
                raise RecordConflict(
                    f"Record '{record['id']}' already exists in '{collection}'."
                )
            records.append(record)
            self._save(data)
        return record

    def update(self, collection: str, record_id: str, payload: Dict, merge: bool = False) -> Dict:
        if not isinstance(payload, dict):
            raise RecordStoreError("Record body must be a JSON object.")
        with self._lock:
            data = self._load()
            records = self._collection(data, collection)
            index = self._find_index(records, record_id)
            if index is None:
                raise RecordNotFound(f"No record '{record_id}' in '{collection}'.")
            existing = records[index]
            record = dict(existing) if merge else {}
            record.update(payload)
            record["id"] = existing.get("id")
            records[index] = record
            self._save(data)
        return record

    def delete(self, collection: str, record_id: str) -> None:
        with self._lock:
            data = self._load()
            records = self._collection(data, collection)
            index = self._find_index(records, record_id)
            if index is None:
                raise RecordNotFound(f"No record '{record_id}' in '{collection}'.")
            del records[index]
            self._save(data)
