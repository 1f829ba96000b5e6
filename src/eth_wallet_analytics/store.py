"""
Saved searches and address annotations persisted to a local JSON document.

Every mutation reads the whole document, changes it and writes it back in
full; there is no partial update.
"""

import json
import logging
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .utils import normalize_address

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
MAX_SAVED_SEARCHES = 20


@dataclass
class SavedSearch:
    id: str
    address: str
    name: str
    start_block: Optional[int] = None
    end_block: Optional[int] = None
    tags: List[str] = field(default_factory=list)
    notes: str = ""
    saved_at: str = ""
    summary: Dict[str, Any] = field(default_factory=dict)

    @property
    def saved_datetime(self) -> Optional[datetime]:
        try:
            return datetime.fromisoformat(self.saved_at)
        except (TypeError, ValueError):
            return None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SavedSearch":
        return cls(
            id=str(data.get("id") or uuid.uuid4().hex),
            address=normalize_address(data.get("address", "")),
            name=data.get("name") or "",
            start_block=data.get("start_block"),
            end_block=data.get("end_block"),
            tags=list(data.get("tags") or []),
            notes=data.get("notes") or "",
            saved_at=data.get("saved_at") or "",
            summary=dict(data.get("summary") or {}),
        )


def _empty_document() -> Dict[str, Any]:
    return {"schema_version": SCHEMA_VERSION, "searches": [], "annotations": {}}


class JsonStore:
    """A single JSON document on disk with explicit read, write and clear."""

    def __init__(self, path):
        self.path = Path(path)

    def read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return _empty_document()

        try:
            with open(self.path) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not read store at {self.path}, starting empty: {e}")
            return _empty_document()

        return self._migrate(data)

    @staticmethod
    def _migrate(data: Any) -> Dict[str, Any]:
        # Unversioned files held the search list directly
        if isinstance(data, list):
            data = {"searches": data}
        if not isinstance(data, dict):
            return _empty_document()

        document = _empty_document()
        document["searches"] = [s for s in data.get("searches") or [] if isinstance(s, dict)]
        document["annotations"] = dict(data.get("annotations") or {})
        return document

    def write(self, document: Dict[str, Any]):
        document = dict(document)
        document["schema_version"] = SCHEMA_VERSION
        self.path.parent.mkdir(parents=True, exist_ok=True)

        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, 'w') as f:
            json.dump(document, f, indent=2, default=str)
        tmp_path.replace(self.path)

    def clear(self):
        if self.path.exists():
            self.path.unlink()


class SearchStore:
    """Saved searches with tags and notes, plus per-address annotations."""

    def __init__(self, store: JsonStore):
        self.store = store

    def _searches(self, document: Dict[str, Any]) -> List[SavedSearch]:
        return [SavedSearch.from_dict(s) for s in document["searches"]]

    def _save_document(self, document: Dict[str, Any], searches: List[SavedSearch]):
        document["searches"] = [asdict(s) for s in searches]
        self.store.write(document)

    def save_search(self, address: str, name: str = "", start_block: Optional[int] = None,
                    end_block: Optional[int] = None, tags: Optional[List[str]] = None,
                    notes: str = "", summary: Optional[Dict[str, Any]] = None) -> SavedSearch:
        """Save a search, replacing an earlier one for the same address and block range.

        Only the MAX_SAVED_SEARCHES most recent searches are kept.
        """
        address = normalize_address(address)
        document = self.store.read()
        searches = self._searches(document)

        existing = next((s for s in searches if s.address == address and
                         s.start_block == start_block and s.end_block == end_block), None)
        if existing is not None:
            searches.remove(existing)

        search = SavedSearch(
            id=existing.id if existing else uuid.uuid4().hex,
            address=address,
            name=name or (existing.name if existing else address),
            start_block=start_block,
            end_block=end_block,
            tags=list(tags) if tags is not None else (existing.tags if existing else []),
            notes=notes or (existing.notes if existing else ""),
            saved_at=datetime.now(timezone.utc).isoformat(),
            summary=dict(summary or {}),
        )
        searches.insert(0, search)
        self._save_document(document, searches[:MAX_SAVED_SEARCHES])
        logger.info(f"Saved search '{search.name}' for {address}")
        return search

    def list_searches(self, address: Optional[str] = None, tag: Optional[str] = None,
                      name: Optional[str] = None, since: Optional[datetime] = None,
                      until: Optional[datetime] = None) -> List[SavedSearch]:
        """Saved searches matching every given filter, newest first."""
        results = []
        for search in self._searches(self.store.read()):
            if address and address.lower() not in search.address:
                continue
            if tag and tag not in search.tags:
                continue
            if name and name.lower() not in search.name.lower():
                continue
            saved = search.saved_datetime
            if since and (saved is None or saved < since):
                continue
            if until and (saved is None or saved > until):
                continue
            results.append(search)

        return sorted(results, key=lambda s: s.saved_at, reverse=True)

    def get_search(self, search_id: str) -> Optional[SavedSearch]:
        return next((s for s in self._searches(self.store.read()) if s.id == search_id), None)

    def delete_search(self, search_id: str) -> bool:
        document = self.store.read()
        searches = self._searches(document)
        remaining = [s for s in searches if s.id != search_id]
        if len(remaining) == len(searches):
            return False
        self._save_document(document, remaining)
        return True

    def _update(self, search_id: str, change) -> Optional[SavedSearch]:
        document = self.store.read()
        searches = self._searches(document)
        search = next((s for s in searches if s.id == search_id), None)
        if search is None:
            logger.warning(f"No saved search with id {search_id}")
            return None
        change(search)
        self._save_document(document, searches)
        return search

    def add_tag(self, search_id: str, tag: str) -> Optional[SavedSearch]:
        tag = tag.strip()

        def change(search: SavedSearch):
            if tag and tag not in search.tags:
                search.tags.append(tag)

        return self._update(search_id, change)

    def remove_tag(self, search_id: str, tag: str) -> Optional[SavedSearch]:
        def change(search: SavedSearch):
            search.tags = [t for t in search.tags if t != tag]

        return self._update(search_id, change)

    def update_notes(self, search_id: str, notes: str) -> Optional[SavedSearch]:
        def change(search: SavedSearch):
            search.notes = notes

        return self._update(search_id, change)

    def all_tags(self) -> List[str]:
        tags = set()
        for search in self._searches(self.store.read()):
            tags.update(search.tags)
        return sorted(tags)

    def get_annotations(self) -> Dict[str, str]:
        return dict(self.store.read()["annotations"])

    def save_annotation(self, address: str, note: str) -> Dict[str, str]:
        """Set or, with an empty note, remove the annotation of an address."""
        document = self.store.read()
        address = normalize_address(address)
        if note:
            document["annotations"][address] = note
        else:
            document["annotations"].pop(address, None)
        self.store.write(document)
        return dict(document["annotations"])
