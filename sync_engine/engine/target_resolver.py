"""Target resolution - expands a workflow's target selection into concrete ids."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..core.exceptions import CollaboratorError, TargetResolutionError
from .collaborators import TradingNetworkInventory
from .types import ResolvedTarget, TargetScope, WorkflowTarget

logger = logging.getLogger(__name__)

# Ids of enclosing scopes narrow the inventory query for narrower scopes
_PARENT_FILTERS = {
    TargetScope.NETWORK: (),
    TargetScope.TRADING_POINT: ("network_ids",),
    TargetScope.EQUIPMENT: ("network_ids", "trading_point_ids"),
    TargetScope.COMPONENT: ("network_ids", "trading_point_ids", "equipment_ids"),
}


@dataclass
class TargetResolution:
    targets: list[ResolvedTarget]
    warnings: list[str] = field(default_factory=list)


class TargetResolver:
    """Resolves targets against the live inventory on every run."""

    def __init__(self, inventory: TradingNetworkInventory) -> None:
        self._inventory = inventory

    async def resolve(self, targets: WorkflowTarget) -> TargetResolution:
        """
        Resolve a target selection.

        Raises:
            TargetResolutionError: if the inventory cannot be queried.
        """
        scope = targets.scope
        explicit = _dedupe(targets.ids_for_scope())

        if not targets.include_all and not explicit:
            return TargetResolution(targets=[])

        filters = {name: list(getattr(targets, name)) for name in _PARENT_FILTERS[scope]}
        filters = {name: ids for name, ids in filters.items() if ids}

        try:
            live = _dedupe(await self._inventory.list_targets(scope, filters))
        except CollaboratorError as e:
            raise TargetResolutionError(e.message, scope=scope.value) from e

        if targets.include_all:
            return TargetResolution(targets=[ResolvedTarget(id=i, scope=scope) for i in live])

        available = set(live)
        kept = [i for i in explicit if i in available]
        missing = [i for i in explicit if i not in available]
        warnings = []
        if missing:
            warnings.append(
                f"Dropped {len(missing)} {scope.value} id(s) not present in inventory: "
                + ", ".join(missing)
            )
            logger.warning("Unknown %s targets dropped: %s", scope.value, missing)

        return TargetResolution(
            targets=[ResolvedTarget(id=i, scope=scope) for i in kept],
            warnings=warnings,
        )


def _dedupe(ids: list[str]) -> list[str]:
    return list(dict.fromkeys(ids))
