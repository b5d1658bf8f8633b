"""Scope resolution: which cells does a trigger watch?

ScopeResolver maps a trigger's scope to the set of cell ids beneath it.
Results are cached by the scope itself (type, id, organization and
commodity filter), so a trigger whose scope is edited anywhere resolves
afresh. Callers invalidate the cache when the topology changes.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Optional

from grainwatch.models.trigger import ScopeType

if TYPE_CHECKING:
    from grainwatch.models.trigger import Trigger
    from grainwatch.storage.repositories import TopologyRepository

logger = logging.getLogger(__name__)

ScopeKey = tuple[ScopeType, Optional[str], Optional[str], Optional[str]]


def scope_key(trigger: Trigger) -> ScopeKey:
    return (trigger.scope_type, trigger.scope_id, trigger.organization_id, trigger.commodity_type_id)


class ScopeResolver:
    """Resolve trigger scopes against the stored topology.

    An unknown scope id resolves to an empty set; it is never an error.
    """

    def __init__(self, topology: TopologyRepository) -> None:
        self._topology = topology
        self._cache: dict[ScopeKey, frozenset[str]] = {}
        self._lock = threading.Lock()

    def resolve(self, trigger: Trigger) -> frozenset[str]:
        """Cell ids covered by *trigger*, after the commodity filter."""
        key = scope_key(trigger)
        with self._lock:
            cached = self._cache.get(key)
        if cached is not None:
            return cached

        cells = self._resolve_uncached(trigger)
        with self._lock:
            self._cache[key] = cells
        return cells

    def covers(self, trigger: Trigger, cell_id: str) -> bool:
        return cell_id in self.resolve(trigger)

    def invalidate(self, trigger: Trigger | None = None) -> None:
        """Drop the scope of *trigger*, or every cached scope when None."""
        with self._lock:
            if trigger is None:
                self._cache.clear()
            else:
                self._cache.pop(scope_key(trigger), None)

    def _resolve_uncached(self, trigger: Trigger) -> frozenset[str]:
        topo = self._topology
        scope = trigger.scope_type

        if scope is ScopeType.ALL:
            if trigger.organization_id is None:
                cells = topo.all_cell_ids()
            else:
                cells = topo.cell_ids_for_organization(trigger.organization_id)
        elif scope is ScopeType.ORGANIZATION:
            cells = topo.cell_ids_for_organization(trigger.organization_id or "")
        elif scope is ScopeType.SITE:
            cells = topo.cell_ids_for_site(trigger.site_id or "")
        elif scope is ScopeType.COMPOUND:
            cells = topo.cell_ids_for_compound(trigger.compound_id or "")
        else:
            cell_id = trigger.cell_id or ""
            cells = frozenset({cell_id}) if topo.cell_exists(cell_id) else frozenset()

        if trigger.commodity_type_id is not None:
            cells = cells & topo.cell_ids_for_commodity_type(trigger.commodity_type_id)

        if not cells:
            logger.debug(
                "Trigger %s (%s %s) covers no cells",
                trigger.id, scope.value, trigger.scope_id,
            )
        return cells
