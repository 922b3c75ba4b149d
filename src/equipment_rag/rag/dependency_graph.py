"""Multi-hop traversal of the equipment dependency graph.

Upstream follows edges toward what feeds the target; downstream follows
edges toward what consumes from it. Each direction is walked level by level
up to max_depth with its own visited set seeded with the target, so:

- cycles terminate (a node is never expanded twice in one direction);
- in diamond-shaped graphs a node reachable through several branches is
  reported once, at its shortest distance;
- a node may appear both upstream and downstream, once in each.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Literal

from pydantic import BaseModel, Field

from src.equipment_rag.models import DependencyNeighbor
from src.equipment_rag.store.base import MaintenanceStore

logger = logging.getLogger(__name__)

Direction = Literal["upstream", "downstream"]


class DependencyNode(BaseModel):
    """An asset reached by traversal.

    Attributes:
        depth: Signed hop count, negative upstream and positive downstream.
        distance: Absolute hop count.
        relationship: Edge description, or "feeds_into"/"receives_from".
    """

    id: str
    name: str
    code: str | None = None
    custom_name: str | None = None
    direction: Direction
    depth: int
    distance: int
    relationship: str
    criticality: str = "medium"


class ChainTarget(BaseModel):
    id: str
    name: str
    code: str | None = None
    custom_name: str | None = None


class DependencyChain(BaseModel):
    """Traversal result around one target asset."""

    target: ChainTarget
    upstream: list[DependencyNode] = Field(default_factory=list)
    downstream: list[DependencyNode] = Field(default_factory=list)
    total_nodes: int = 0
    max_depth_reached: int = 0

    @property
    def nodes(self) -> list[DependencyNode]:
        """Both directions merged, closest first."""
        return sorted(self.upstream + self.downstream, key=lambda n: n.distance)


class ProcessContext(BaseModel):
    """Single-hop neighbours of an asset, used for the process-chain block."""

    upstream: list[DependencyNeighbor] = Field(default_factory=list)
    downstream: list[DependencyNeighbor] = Field(default_factory=list)

    @property
    def dependency_ids(self) -> list[str]:
        return [n.asset.id for n in self.upstream + self.downstream]


class DependencyGraph:
    """Traverses dependencies through the store.

    Args:
        store: Provides one-hop upstream/downstream lookups.
        max_depth: Default hop limit.
    """

    def __init__(self, store: MaintenanceStore, max_depth: int = 3) -> None:
        self._store = store
        self._max_depth = max_depth

    async def traverse(
        self,
        equipment_id: str,
        organization_id: str | None = None,
        max_depth: int | None = None,
    ) -> DependencyChain:
        """Walk upstream and downstream from an asset.

        Args:
            equipment_id: Target asset.
            organization_id: Tenant scope. The target and every node must
                belong to it.
            max_depth: Hop limit, defaults to the configured one.

        Returns:
            DependencyChain with each direction sorted closest first. An
            unknown target yields an empty chain named "Unknown".
        """
        depth_limit = self._max_depth if max_depth is None else max_depth
        target = await self._store.get_asset(equipment_id, organization_id)
        if target is None:
            logger.warning("Dependency traversal target %s not found", equipment_id)
            return DependencyChain(target=ChainTarget(id=equipment_id, name="Unknown"))

        upstream = await self._walk(equipment_id, "upstream", depth_limit, target.organization_id)
        downstream = await self._walk(equipment_id, "downstream", depth_limit, target.organization_id)
        reached = max((n.distance for n in upstream + downstream), default=0)

        logger.info(
            "Traversed %s: %d upstream, %d downstream, depth %d/%d",
            target.name,
            len(upstream),
            len(downstream),
            reached,
            depth_limit,
        )
        return DependencyChain(
            target=ChainTarget(
                id=target.id, name=target.name, code=target.code, custom_name=target.custom_name
            ),
            upstream=upstream,
            downstream=downstream,
            total_nodes=len(upstream) + len(downstream),
            max_depth_reached=reached,
        )

    async def _walk(
        self, start_id: str, direction: Direction, max_depth: int, organization_id: str
    ) -> list[DependencyNode]:
        fetch: Callable[[str], Awaitable[list[DependencyNeighbor]]] = (
            self._store.upstream_neighbors
            if direction == "upstream"
            else self._store.downstream_neighbors
        )
        default_relationship = "feeds_into" if direction == "upstream" else "receives_from"
        sign = -1 if direction == "upstream" else 1

        visited = {start_id}
        frontier = [start_id]
        nodes: list[DependencyNode] = []

        for level in range(1, max_depth + 1):
            next_frontier: list[str] = []
            for node_id in frontier:
                for neighbor in await fetch(node_id):
                    asset = neighbor.asset
                    if asset.organization_id != organization_id:
                        logger.warning("Skipping cross-tenant dependency %s -> %s", node_id, asset.id)
                        continue
                    if asset.id in visited:
                        logger.debug("Already visited %s (%s), skipping", asset.name, direction)
                        continue
                    visited.add(asset.id)
                    nodes.append(
                        DependencyNode(
                            id=asset.id,
                            name=asset.name,
                            code=asset.code,
                            custom_name=asset.custom_name,
                            direction=direction,
                            depth=sign * level,
                            distance=level,
                            relationship=neighbor.description or default_relationship,
                            criticality=neighbor.criticality,
                        )
                    )
                    next_frontier.append(asset.id)
            if not next_frontier:
                break
            frontier = next_frontier

        return nodes

    async def process_context(self, asset_id: str) -> ProcessContext:
        """Direct upstream and downstream neighbours of an asset."""
        return ProcessContext(
            upstream=await self._store.upstream_neighbors(asset_id),
            downstream=await self._store.downstream_neighbors(asset_id),
        )


# ── Rendering ───────────────────────────────────────────────────────────────


def _hops(distance: int) -> str:
    return f"{distance} hop{'s' if distance > 1 else ''}"


def format_dependency_chain(chain: DependencyChain) -> str:
    """Render the chain from furthest upstream, through the target, downstream."""
    if chain.total_nodes == 0:
        return ""

    width = chain.max_depth_reached
    lines = ["🔗 Process Chain (Multi-Hop Dependencies):", ""]

    for node in sorted(chain.upstream, key=lambda n: n.distance, reverse=True):
        alias = f' ("{node.custom_name}")' if node.custom_name else ""
        lines.append(f"{'  ' * (width - node.distance)}⬆️ {node.name}{alias} [{_hops(node.distance)} upstream]")

    target_alias = f' ("{chain.target.custom_name}")' if chain.target.custom_name else ""
    lines.append(f"{'  ' * width}🎯 **{chain.target.name}{target_alias}** ← YOU ARE HERE")

    for node in sorted(chain.downstream, key=lambda n: n.distance):
        alias = f' ("{node.custom_name}")' if node.custom_name else ""
        lines.append(
            f"{'  ' * (width + node.distance)}⬇️ {node.name}{alias} [{_hops(node.distance)} downstream]"
        )

    lines += ["", "📊 Diagnostic Guidance:"]
    if chain.upstream:
        lines.append(f"• Upstream ({len(chain.upstream)} equipment): Check supply/input quality issues")
        lines.append(f"  - Start with: {chain.upstream[0].name} (closest upstream)")
    if chain.downstream:
        lines.append(
            f"• Downstream ({len(chain.downstream)} equipment): Check backpressure/capacity issues"
        )
        lines.append(f"  - Start with: {chain.downstream[0].name} (closest downstream)")

    return "\n".join(lines) + "\n"


def format_process_chain(context: ProcessContext, asset_name: str) -> str:
    """System prompt block placing the asset in its direct process chain."""
    if not context.upstream and not context.downstream:
        return ""

    def line(neighbor: DependencyNeighbor, direction: str) -> str:
        note = f" ({neighbor.description})" if neighbor.description else ""
        return f"→ {neighbor.asset.name}{note} [{direction}]"

    body = [line(n, "upstream") for n in context.upstream]
    body.append(f"→ **{asset_name}** ← YOU ARE HERE")
    body += [line(n, "downstream") for n in context.downstream]

    return (
        "\n\nProcess Chain Context:\n"
        + "\n".join(body)
        + "\n\nNote: Search results include documentation from connected equipment when "
        "relevant for troubleshooting.\nWhen analyzing issues, consider the entire process chain."
    )
