"""Resource store: the control-plane object store the reconcilers talk to.

:class:`Store` is the interface the reconcilers depend on.
:class:`InMemoryStore` implements it with the semantics the reconcilers rely
on from a real control plane:

- optimistic concurrency: writes carry the ``resource_version`` that was
  read and fail with :class:`~dronectl.errors.ConflictError` when the stored
  record moved on;
- ``update`` never touches status and ``update_status`` never touches spec;
- field indexes registered with :meth:`Store.index_field` back
  ``list(..., matching_fields=...)``;
- deleting a record cascades to everything it controls through owner
  references;
- every change is published to watchers as a :class:`WatchEvent`.

All operations are guarded by an RLock; values are deep-copied in and out
so callers can never mutate stored state by accident.
"""

from __future__ import annotations

import copy
import itertools
import logging
import threading
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple, Type, TypeVar

from dronectl.errors import (
    AlreadyExistsError,
    ConflictError,
    NotFoundError,
    StoreError,
)
from dronectl.resources import ObjectKey, Resource

logger = logging.getLogger("DroneCtl.Store")

T = TypeVar("T", bound=Resource)

ADDED = "ADDED"
MODIFIED = "MODIFIED"
DELETED = "DELETED"

IndexFunc = Callable[[Resource], List[str]]


@dataclass
class WatchEvent:
    """A change notification for one record."""

    type: str  # ADDED | MODIFIED | DELETED
    obj: Resource

    @property
    def kind(self) -> str:
        return self.obj.kind


class Store(ABC):
    """Typed get/list/create/update/delete plus field indexes and watches."""

    @abstractmethod
    def get(self, kind: Type[T], key: ObjectKey) -> T:
        """Return the record, or raise :class:`NotFoundError`."""

    @abstractmethod
    def list(
        self,
        kind: Type[T],
        namespace: Optional[str] = None,
        matching_fields: Optional[Dict[str, str]] = None,
        labels: Optional[Dict[str, str]] = None,
    ) -> List[T]:
        """Return matching records in listing order (namespace, then name)."""

    @abstractmethod
    def create(self, obj: T) -> T: ...

    @abstractmethod
    def update(self, obj: T) -> T: ...

    @abstractmethod
    def update_status(self, obj: T) -> T: ...

    @abstractmethod
    def delete(self, obj: Resource) -> None: ...

    @abstractmethod
    def index_field(self, kind: Type[Resource], field_name: str, fn: IndexFunc) -> None: ...

    @abstractmethod
    def watch(self, callback: Callable[[WatchEvent], None]) -> str: ...

    @abstractmethod
    def unwatch(self, watch_id: str) -> None: ...


class InMemoryStore(Store):
    """Thread-safe in-process store.

    Example::

        store = InMemoryStore()
        swarm = store.create(Swarm(metadata=ObjectMeta("bees", "default")))
        swarm.spec.howmany = 3
        store.update(swarm)              # ConflictError if someone wrote first
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        # kind -> {(namespace, name) -> record}
        self._objects: Dict[str, Dict[Tuple[str, str], Resource]] = {}
        # kind -> {field -> index fn}
        self._indexes: Dict[str, Dict[str, IndexFunc]] = {}
        self._watchers: Dict[str, Callable[[WatchEvent], None]] = {}
        self._rv = itertools.count(1)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, kind: Type[T], key: ObjectKey) -> T:
        ns = key.namespace if kind.namespaced else ""
        with self._lock:
            obj = self._objects.get(kind.kind, {}).get((ns, key.name))
            if obj is None:
                raise NotFoundError(
                    f'{kind.kind} "{key.name}" not found', kind=kind.kind, name=key.name
                )
            return copy.deepcopy(obj)

    def list(
        self,
        kind: Type[T],
        namespace: Optional[str] = None,
        matching_fields: Optional[Dict[str, str]] = None,
        labels: Optional[Dict[str, str]] = None,
    ) -> List[T]:
        with self._lock:
            index_fns = self._indexes.get(kind.kind, {})
            for field_name in matching_fields or {}:
                if field_name not in index_fns:
                    raise StoreError(
                        f"Index with name field:{field_name} does not exist for {kind.kind}",
                        kind=kind.kind,
                    )
            result = []
            for (ns, _name), obj in sorted(self._objects.get(kind.kind, {}).items()):
                if namespace and kind.namespaced and ns != namespace:
                    continue
                if labels and any(obj.metadata.labels.get(k) != v for k, v in labels.items()):
                    continue
                if matching_fields and any(
                    value not in (index_fns[f](obj) or [])
                    for f, value in matching_fields.items()
                ):
                    continue
                result.append(copy.deepcopy(obj))
            return result

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, obj: T) -> T:
        stored = copy.deepcopy(obj)
        meta = stored.metadata
        if not stored.namespaced:
            meta.namespace = ""
        if not meta.name:
            raise StoreError(f"{stored.kind} name is required", kind=stored.kind)
        with self._lock:
            bucket = self._objects.setdefault(stored.kind, {})
            if (meta.namespace, meta.name) in bucket:
                raise AlreadyExistsError(
                    f'{stored.kind} "{meta.name}" already exists',
                    kind=stored.kind,
                    name=meta.name,
                )
            meta.uid = str(uuid.uuid4())
            meta.resource_version = str(next(self._rv))
            meta.creation_timestamp = time.time()
            bucket[(meta.namespace, meta.name)] = stored
            out = copy.deepcopy(stored)
        self._notify(WatchEvent(ADDED, copy.deepcopy(out)))
        return out

    def update(self, obj: T) -> T:
        return self._write(obj, status_only=False)

    def update_status(self, obj: T) -> T:
        return self._write(obj, status_only=True)

    def _write(self, obj: T, status_only: bool) -> T:
        with self._lock:
            current = self._current(obj)
            if obj.metadata.resource_version != current.metadata.resource_version:
                raise ConflictError(
                    f'Operation cannot be fulfilled on {obj.kind} "{obj.name}": '
                    "the object has been modified; please apply your changes "
                    "to the latest version and try again",
                    kind=obj.kind,
                    name=obj.name,
                )
            stored = copy.deepcopy(current)
            if status_only:
                if hasattr(obj, "status"):
                    stored.status = copy.deepcopy(obj.status)
            else:
                incoming = copy.deepcopy(obj)
                incoming.metadata.uid = current.metadata.uid
                incoming.metadata.namespace = current.metadata.namespace
                incoming.metadata.creation_timestamp = current.metadata.creation_timestamp
                if hasattr(current, "status"):
                    incoming.status = stored.status
                stored = incoming
            stored.metadata.resource_version = str(next(self._rv))
            self._objects[obj.kind][(current.namespace, current.name)] = stored
            out = copy.deepcopy(stored)
        self._notify(WatchEvent(MODIFIED, copy.deepcopy(out)))
        return out

    def delete(self, obj: Resource) -> None:
        with self._lock:
            current = self._current(obj)
            removed = [current]
            del self._objects[current.kind][(current.namespace, current.name)]
            removed.extend(self._collect_dependents(current.metadata.uid))
        for gone in removed:
            self._notify(WatchEvent(DELETED, copy.deepcopy(gone)))
        if len(removed) > 1:
            logger.debug(
                f"Cascade delete of {current.kind} {current.key} removed "
                f"{len(removed) - 1} dependent(s)"
            )

    def _collect_dependents(self, owner_uid: str) -> List[Resource]:
        """Remove (recursively) every record controlled by *owner_uid*. Lock held."""
        removed: List[Resource] = []
        for bucket in self._objects.values():
            for k, candidate in list(bucket.items()):
                if any(ref.uid == owner_uid for ref in candidate.metadata.owner_references):
                    del bucket[k]
                    removed.append(candidate)
        for child in list(removed):
            removed.extend(self._collect_dependents(child.metadata.uid))
        return removed

    def _current(self, obj: Resource) -> Resource:
        ns = obj.namespace if obj.namespaced else ""
        current = self._objects.get(obj.kind, {}).get((ns, obj.name))
        if current is None:
            raise NotFoundError(f'{obj.kind} "{obj.name}" not found', kind=obj.kind, name=obj.name)
        return current

    # ------------------------------------------------------------------
    # Indexes & watches
    # ------------------------------------------------------------------

    def index_field(self, kind: Type[Resource], field_name: str, fn: IndexFunc) -> None:
        with self._lock:
            fns = self._indexes.setdefault(kind.kind, {})
            if field_name in fns:
                raise StoreError(f"Indexer conflict: {kind.kind} {field_name}", kind=kind.kind)
            fns[field_name] = fn
        logger.debug(f"Registered index {field_name} on {kind.kind}")

    def watch(self, callback: Callable[[WatchEvent], None]) -> str:
        watch_id = str(uuid.uuid4())
        with self._lock:
            self._watchers[watch_id] = callback
        return watch_id

    def unwatch(self, watch_id: str) -> None:
        with self._lock:
            self._watchers.pop(watch_id, None)

    def _notify(self, event: WatchEvent) -> None:
        with self._lock:
            callbacks = list(self._watchers.values())
        for cb in callbacks:
            try:
                cb(event)
            except Exception as exc:
                logger.warning(f"Watch callback error for {event.kind} {event.obj.key}: {exc}")

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def count(self, kind: Type[Resource], namespace: Optional[str] = None) -> int:
        return len(self.list(kind, namespace=namespace))
