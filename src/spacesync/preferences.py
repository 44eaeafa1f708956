"""
Advisor roster, advisor groups and scalar preferences.

Each collection is held in memory, persisted through the debounced
scheduler on every mutation, and replaced wholesale when another context
changes its key (see :meth:`bind`). Hydration from another context never
schedules a write of its own.
"""

import json
import logging
import threading
import uuid
from typing import Any, Callable, Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from spacesync.exceptions import (
    AdvisorNotFoundError,
    DuplicateAdvisorError,
    DuplicateGroupError,
    MalformedRecordError,
)
from spacesync.keys import StoreKeys
from spacesync.kvstore import KeyValueStore
from spacesync.scheduler import DebouncedPersistenceScheduler
from spacesync.sync import CrossContextSyncListener, Subscription

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


def new_advisor_id() -> str:
    return f"advisor-{uuid.uuid4().hex[:12]}"


class Advisor(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str = Field(default_factory=new_advisor_id)
    name: str = Field(..., min_length=1)
    description: str = ""
    active: bool = True
    color: Optional[str] = None


class AdvisorGroup(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str = Field(..., min_length=1)
    description: str = ""
    advisors: list[str] = Field(default_factory=list)


class PersistedCollection(Generic[T]):
    """An ordered list of records stored as one JSON array under one key."""

    item_model: type[T]

    def __init__(
        self,
        key: str,
        store: KeyValueStore,
        scheduler: DebouncedPersistenceScheduler,
    ):
        self.key = key
        self.store = store
        self.scheduler = scheduler
        self._lock = threading.RLock()
        try:
            raw = store.get_item(key)
        except MalformedRecordError as e:
            logger.warning(f"Ignoring undecodable {key}: {e.reason}")
            raw = None
        self._items: list[T] = self._parse(raw)

    def _parse(self, raw: Any) -> list[T]:
        if raw is None:
            return []
        try:
            data = json.loads(raw) if isinstance(raw, str) else raw
        except json.JSONDecodeError as e:
            logger.warning(f"Ignoring malformed {self.key}: {e}")
            return []
        if not isinstance(data, list):
            logger.warning(f"Ignoring {self.key}: expected a list")
            return []
        items = []
        for entry in data:
            try:
                items.append(self.item_model.model_validate(entry))
            except ValidationError as e:
                logger.warning(f"Skipping invalid entry in {self.key}: {e}")
        return items

    @property
    def items(self) -> list[T]:
        with self._lock:
            return list(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def snapshot(self) -> list[dict[str, Any]]:
        with self._lock:
            return [item.model_dump(exclude_none=True) for item in self._items]

    def _changed(self) -> None:
        self.scheduler.schedule(self.key, self.snapshot())

    def hydrate(self, value: Any) -> None:
        """Replace the in-memory list with a value written elsewhere."""
        items = self._parse(value)
        with self._lock:
            self._items = items
        logger.debug(f"Hydrated {self.key} ({len(items)} entries)")

    def bind(self, listener: CrossContextSyncListener) -> Subscription:
        return listener.subscribe(self.key, self.hydrate, parser=json.loads)


class AdvisorRoster(PersistedCollection[Advisor]):
    """
    The user's advisors. Names are unique, compared case-insensitively.
    """

    item_model = Advisor

    def __init__(
        self,
        store: KeyValueStore,
        scheduler: DebouncedPersistenceScheduler,
        keys: Optional[StoreKeys] = None,
    ):
        super().__init__((keys or StoreKeys()).advisors, store, scheduler)

    def find(self, name: str) -> Optional[Advisor]:
        wanted = name.lower()
        with self._lock:
            return next((a for a in self._items if a.name.lower() == wanted), None)

    def _index(self, id_or_name: str) -> int:
        for index, advisor in enumerate(self._items):
            if advisor.id == id_or_name or advisor.name.lower() == id_or_name.lower():
                return index
        raise AdvisorNotFoundError(id_or_name)

    @property
    def active(self) -> list[Advisor]:
        return [a for a in self.items if a.active]

    def add(self, name: str, description: str = "", active: bool = True, **extra: Any) -> Advisor:
        """
        Add an advisor.

        Raises:
            DuplicateAdvisorError: If an advisor with this name already exists
        """
        with self._lock:
            if self.find(name) is not None:
                raise DuplicateAdvisorError(name)
            advisor = Advisor(name=name, description=description, active=active, **extra)
            self._items.append(advisor)
        self._changed()
        return advisor

    def update(self, id_or_name: str, **updates: Any) -> Advisor:
        with self._lock:
            index = self._index(id_or_name)
            current = self._items[index]
            new_name = updates.get("name")
            if new_name and new_name.lower() != current.name.lower():
                if self.find(new_name) is not None:
                    raise DuplicateAdvisorError(new_name)
            advisor = Advisor.model_validate({**current.model_dump(), **updates})
            self._items[index] = advisor
        self._changed()
        return advisor

    def remove(self, id_or_name: str) -> bool:
        with self._lock:
            try:
                index = self._index(id_or_name)
            except AdvisorNotFoundError:
                return False
            del self._items[index]
        self._changed()
        return True

    def toggle_active(self, id_or_name: str) -> Advisor:
        with self._lock:
            current = self._items[self._index(id_or_name)]
        return self.update(current.id, active=not current.active)

    def set_active(self, name: str, active: bool) -> Advisor:
        return self.update(name, active=active)


class AdvisorGroups(PersistedCollection[AdvisorGroup]):
    """Named groups of advisors, referenced by advisor name."""

    item_model = AdvisorGroup

    def __init__(
        self,
        store: KeyValueStore,
        scheduler: DebouncedPersistenceScheduler,
        keys: Optional[StoreKeys] = None,
    ):
        super().__init__((keys or StoreKeys()).advisor_groups, store, scheduler)

    def find(self, name: str) -> Optional[AdvisorGroup]:
        wanted = name.lower()
        with self._lock:
            return next((g for g in self._items if g.name.lower() == wanted), None)

    def _require(self, name: str) -> AdvisorGroup:
        group = self.find(name)
        if group is None:
            raise AdvisorNotFoundError(name, kind="Group")
        return group

    def add_group(self, name: str, description: str = "") -> AdvisorGroup:
        with self._lock:
            if self.find(name) is not None:
                raise DuplicateGroupError(name)
            group = AdvisorGroup(name=name, description=description)
            self._items.append(group)
        self._changed()
        return group

    def remove_group(self, name: str) -> bool:
        with self._lock:
            group = self.find(name)
            if group is None:
                return False
            self._items.remove(group)
        self._changed()
        return True

    def add_advisor(self, group_name: str, advisor_name: str) -> AdvisorGroup:
        with self._lock:
            group = self._require(group_name)
            if advisor_name.lower() in (a.lower() for a in group.advisors):
                return group
            group.advisors.append(advisor_name)
        self._changed()
        return group

    def remove_advisor(self, group_name: str, advisor_name: str) -> AdvisorGroup:
        with self._lock:
            group = self._require(group_name)
            group.advisors = [a for a in group.advisors if a.lower() != advisor_name.lower()]
        self._changed()
        return group


class PreferenceValues(BaseModel):
    """Scalar preferences and their defaults."""

    model_config = ConfigDict(validate_assignment=True)

    max_tokens: int = Field(2048, ge=1)
    reasoning_mode: bool = False
    sidebar_collapsed: bool = False
    auto_scroll: bool = True
    paragraph_spacing: float = Field(1.0, ge=0)


def parse_bool(raw: str) -> bool:
    value = raw.strip().lower()
    if value == "true":
        return True
    if value == "false":
        return False
    raise ValueError(f"not a boolean: {raw!r}")


def _parser_for(field_name: str) -> Callable[[str], Any]:
    annotation = PreferenceValues.model_fields[field_name].annotation
    if annotation is bool:
        return parse_bool
    if annotation is int:
        return lambda raw: int(raw.strip())
    return lambda raw: float(raw.strip())


class AppPreferences:
    """
    Scalar settings, one store key each.

    Missing or unparseable stored values fall back to the defaults.
    """

    def __init__(
        self,
        store: KeyValueStore,
        scheduler: DebouncedPersistenceScheduler,
        keys: Optional[StoreKeys] = None,
    ):
        self.store = store
        self.scheduler = scheduler
        self.field_keys = (keys or StoreKeys()).scalar_settings()
        self._lock = threading.Lock()
        self.values = self._load()

    def _load(self) -> PreferenceValues:
        loaded: dict[str, Any] = {}
        for field_name, key in self.field_keys.items():
            try:
                raw = self.store.get_item(key)
            except MalformedRecordError as e:
                logger.warning(f"Ignoring undecodable value for {key}: {e.reason}")
                continue
            if raw is None:
                continue
            try:
                loaded[field_name] = _parser_for(field_name)(raw)
            except ValueError:
                logger.warning(f"Ignoring malformed value for {key}: {raw!r}")
        try:
            return PreferenceValues(**loaded)
        except ValidationError as e:
            logger.warning(f"Falling back to default preferences: {e}")
            return PreferenceValues()

    def get(self, field_name: str) -> Any:
        return getattr(self.values, field_name)

    def set(self, field_name: str, value: Any) -> None:
        """
        Change one preference and schedule its write.

        Raises:
            KeyError: For an unknown preference
            pydantic.ValidationError: If value is not valid for the preference
        """
        key = self.field_keys[field_name]
        with self._lock:
            setattr(self.values, field_name, value)
            current = getattr(self.values, field_name)
        self.scheduler.schedule(key, current)

    def reset(self) -> None:
        """Restore defaults and remove the stored values."""
        with self._lock:
            self.values = PreferenceValues()
        for key in self.field_keys.values():
            self.scheduler.cancel(key)
            self.store.remove_item(key)

    def hydrate(self, field_name: str, value: Any) -> None:
        """Apply a value written by another context. Never schedules a write."""
        with self._lock:
            if value is None:
                value = PreferenceValues.model_fields[field_name].default
            try:
                setattr(self.values, field_name, value)
            except ValidationError as e:
                logger.warning(f"Ignoring invalid {field_name} from another context: {e}")

    def bind(self, listener: CrossContextSyncListener) -> list[Subscription]:
        return [
            listener.subscribe(
                key,
                lambda value, name=field_name: self.hydrate(name, value),
                parser=_parser_for(field_name),
            )
            for field_name, key in self.field_keys.items()
        ]

    def as_dict(self) -> dict[str, Any]:
        with self._lock:
            return self.values.model_dump()
