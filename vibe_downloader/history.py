"""Keeps a record of finished downloads in a JSON file."""
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from .jobs import JobDescriptor, new_job_id


class HistoryItem(BaseModel):
    id: str = Field(default_factory=new_job_id)
    title: str
    url: str
    platform: Optional[str] = None
    mode: str = 'video'
    path: Optional[str] = None
    completed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


_HISTORY_ADAPTER = TypeAdapter(List[HistoryItem])


class HistoryStore:
    """Loads and saves the download history, newest first."""
    MAX_ITEMS = 500

    def __init__(self, history_path: Path):
        self.history_path = history_path
        self.logger = logging.getLogger(__name__)

    def load(self) -> List[HistoryItem]:
        if not self.history_path.exists():
            return []
        try:
            return _HISTORY_ADAPTER.validate_json(self.history_path.read_bytes())
        except (ValidationError, json.JSONDecodeError, IOError) as e:
            self.logger.error(f"Error loading history from {self.history_path}: {e}")
            return []

    def save(self, items: List[HistoryItem]):
        try:
            self.history_path.parent.mkdir(parents=True, exist_ok=True)
            self.history_path.write_bytes(_HISTORY_ADAPTER.dump_json(items, indent=2))
        except IOError as e:
            self.logger.error(f"Error saving history to {self.history_path}: {e}")

    def add(self, job: JobDescriptor, path: Optional[str]) -> HistoryItem:
        item = HistoryItem(
            id=job.job_id,
            title=job.display_title,
            url=job.source_url,
            platform=job.platform.value if job.platform else None,
            mode=job.mode.value,
            path=path,
        )
        items = [item] + [existing for existing in self.load() if existing.id != item.id]
        self.save(items[:self.MAX_ITEMS])
        return item

    def delete(self, item_id: str) -> bool:
        items = self.load()
        remaining = [item for item in items if item.id != item_id]
        self.save(remaining)
        return len(remaining) != len(items)

    def clear(self):
        self.save([])
