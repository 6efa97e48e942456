"""Per-profile report history persisted through a key-value collaborator.

All state lives under three keys and is read once on construction and
written back in full after every mutation. Anything unreadable in the
persisted state is logged and replaced with an empty default so that
startup never fails on bad data.
"""
import os
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Dict, Any
from dotenv import load_dotenv
load_dotenv()

from pydantic import ValidationError
from schemas import HistoryItem, ResearchReport

logger = logging.getLogger(__name__)

HISTORY_KEY = "goldenDataStreamHistory"
PROFILES_KEY = "goldenDataStreamProfiles"
CURRENT_PROFILE_KEY = "goldenDataStreamCurrentProfile"
DEFAULT_PROFILE = "Default"
MAX_HISTORY_ITEMS = int(os.getenv("GOLDSTREAM_MAX_HISTORY", "15"))
DATA_PATH = os.getenv("GOLDSTREAM_DATA_PATH", "goldstream_data.json")

class MemoryStorage:
	def __init__(self, data: Optional[Dict[str, Any]] = None):
		self.data = dict(data or {})

	def read_all(self) -> Dict[str, Any]:
		return dict(self.data)

	def write_all(self, data: Dict[str, Any]) -> None:
		self.data = dict(data)

class JsonFileStorage:
	"""Key-value storage backed by a single JSON document on disk."""

	def __init__(self, path=DATA_PATH):
		self.path = Path(path)

	def read_all(self) -> Dict[str, Any]:
		if not self.path.exists():
			return {}
		try:
			data = json.loads(self.path.read_text(encoding="utf-8"))
		except (OSError, ValueError):
			logger.exception("Failed to read stored state from %s, starting empty", self.path)
			return {}
		if not isinstance(data, dict):
			logger.error("Stored state in %s is not an object, starting empty", self.path)
			return {}
		return data

	def write_all(self, data: Dict[str, Any]) -> None:
		self.path.parent.mkdir(parents=True, exist_ok=True)
		tmp = self.path.with_name(self.path.name + ".tmp")
		tmp.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
		os.replace(tmp, self.path)

def normalize_history_item(raw: dict) -> HistoryItem:
	"""Upgrade a persisted record to the current HistoryItem shape.

	Records written before profiles existed carry no profile tag and are
	placed in the default profile; records without a date fall back to
	their id, which is the generation timestamp.
	"""
	if not isinstance(raw, dict):
		raise ValueError(f"History record must be an object, got {type(raw).__name__}")
	record = dict(raw)
	profile = record.get("profile")
	if not isinstance(profile, str) or not profile.strip():
		record["profile"] = DEFAULT_PROFILE
	if not record.get("date") and record.get("id"):
		record["date"] = record["id"]
	return HistoryItem.model_validate(record)

def make_history_item(startup_name: str, report: ResearchReport, profile: str, now: Optional[datetime] = None) -> HistoryItem:
	stamp = (now or datetime.now(timezone.utc)).isoformat()
	return HistoryItem(id=stamp, startup_name=startup_name, date=stamp, report=report, profile=profile)

class HistoryStore:
	def __init__(self, storage=None, max_items: int = MAX_HISTORY_ITEMS):
		if max_items < 1:
			raise ValueError("max_items must be at least 1")
		self.storage = storage if storage is not None else MemoryStorage()
		self.max_items = max_items
		self._items: List[HistoryItem] = []
		self._profiles: List[str] = [DEFAULT_PROFILE]
		self._current = DEFAULT_PROFILE
		self._load()

	@property
	def items(self) -> List[HistoryItem]:
		return list(self._items)

	@property
	def profiles(self) -> List[str]:
		return list(self._profiles)

	@property
	def current_profile(self) -> str:
		return self._current

	def _load(self):
		try:
			data = self.storage.read_all()
		except Exception:
			logger.exception("Stored state unreadable, starting with an empty history")
			return
		raw_history = data.get(HISTORY_KEY, [])
		try:
			if not isinstance(raw_history, list):
				raise ValueError(f"{HISTORY_KEY} must be a list")
			self._items = [normalize_history_item(raw) for raw in raw_history][:self.max_items]
		except (ValueError, ValidationError):
			logger.exception("Discarding malformed stored history")
			self._items = []
		raw_profiles = data.get(PROFILES_KEY, [])
		if isinstance(raw_profiles, list) and all(isinstance(p, str) and p.strip() for p in raw_profiles):
			for name in raw_profiles:
				if name not in self._profiles:
					self._profiles.append(name)
		else:
			logger.error("Discarding malformed stored profile list: %r", raw_profiles)
		current = data.get(CURRENT_PROFILE_KEY, DEFAULT_PROFILE)
		if isinstance(current, str) and current.strip():
			self._current = current
			if current not in self._profiles:
				self._profiles.append(current)
		else:
			logger.error("Discarding malformed stored current profile: %r", current)
		# profiles referenced by legacy history must stay selectable
		for item in self._items:
			if item.profile not in self._profiles:
				self._profiles.append(item.profile)

	def _save(self, items: List[HistoryItem], profiles: List[str], current: str):
		# Write first, then commit to memory, so a failed write changes nothing
		self.storage.write_all({
			HISTORY_KEY: [item.model_dump(by_alias=True, exclude_none=True) for item in items],
			PROFILES_KEY: list(profiles),
			CURRENT_PROFILE_KEY: current,
		})
		self._items, self._profiles, self._current = items, profiles, current

	def get(self, item_id: str) -> Optional[HistoryItem]:
		for item in self._items:
			if item.id == item_id:
				return item
		return None

	def append(self, item: HistoryItem) -> None:
		self._save([item, *self._items][:self.max_items], self._profiles, self._current)

	def replace_by_id(self, item_id: str, report: ResearchReport) -> Optional[HistoryItem]:
		for i, item in enumerate(self._items):
			if item.id == item_id:
				updated = item.model_copy(update={"report": report})
				items = list(self._items)
				items[i] = updated
				self._save(items, self._profiles, self._current)
				return updated
		return None

	def list_by_profile(self, profile: Optional[str] = None) -> List[HistoryItem]:
		profile = self._current if profile is None else profile
		return [item for item in self._items if item.profile == profile]

	def switch_profile(self, name: str) -> List[HistoryItem]:
		name = _check_profile_name(name)
		profiles = self._profiles if name in self._profiles else [*self._profiles, name]
		self._save(self._items, profiles, name)
		return self.list_by_profile(name)

	def create_profile(self, name: str) -> bool:
		# Exact, case-sensitive match; an existing name is left untouched
		name = _check_profile_name(name)
		if name in self._profiles:
			return False
		self._save(self._items, [*self._profiles, name], name)
		return True

def _check_profile_name(name) -> str:
	if not isinstance(name, str) or not name.strip():
		raise ValueError("Profile name must be a non-empty string")
	return name
