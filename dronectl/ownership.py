"""Owner-based garbage collection of workload units.

Owned units are found through a field index keyed on the name of the
controlling owner (``.metadata.controller``). The index is registered once
per unit kind when the controllers are wired up.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Type

from dronectl.errors import NotFoundError
from dronectl.resources import GROUP_VERSION, Resource, get_controller_of
from dronectl.store import Store

logger = logging.getLogger("DroneCtl.Ownership")

OWNER_KEY = ".metadata.controller"


def owner_index(owner_kind: str) -> Callable[[Resource], List[str]]:
    """Build an index function returning the controller owner's name.

    Units without a controller, or controlled by something other than a
    ``GROUP_VERSION`` record of *owner_kind*, are left out of the index.
    """

    def _index(obj: Resource) -> List[str]:
        owner = get_controller_of(obj)
        if owner is None:
            return []
        if owner.api_version != GROUP_VERSION or owner.kind != owner_kind:
            return []
        return [owner.name]

    return _index


def register_owner_index(store: Store, unit_kind: Type[Resource], owner_kind: str) -> None:
    store.index_field(unit_kind, OWNER_KEY, owner_index(owner_kind))


def list_owned_units(store: Store, parent: Resource, unit_kind: Type[Resource]) -> List[Resource]:
    return store.list(
        unit_kind,
        namespace=parent.namespace,
        matching_fields={OWNER_KEY: parent.name},
    )


def cleanup_owned_units(
    store: Store,
    parent: Resource,
    unit_kind: Type[Resource],
    keep: Callable[[Resource], bool],
) -> int:
    """Delete every unit owned by *parent* that *keep* rejects.

    Returns the number of units deleted. The first failed delete aborts the
    pass and propagates; whatever is left is picked up on the next trigger.
    """
    units = list_owned_units(store, parent, unit_kind)

    deleted = 0
    for unit in units:
        if keep(unit):
            continue
        try:
            store.delete(unit)
        except NotFoundError:
            # Already gone (cascade or another writer); nothing left to do.
            continue
        deleted += 1

    logger.info(
        f"Finished cleaning up old {unit_kind.kind} resources for "
        f"{parent.kind} {parent.key}: number_deleted={deleted}"
    )
    return deleted
