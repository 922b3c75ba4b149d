"""Where an asset sits in the plant, and what it directly depends on."""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field

from src.equipment_rag.models import Asset, DependencyNeighbor
from src.equipment_rag.store.base import MaintenanceStore

logger = logging.getLogger(__name__)

_CRITICALITY_ICONS = {"critical": "🔴", "high": "🟠"}


class HierarchyContext(BaseModel):
    """Path from the root, neighbours in the tree, and one-hop dependencies."""

    path: list[Asset] = Field(default_factory=list)
    siblings: list[Asset] = Field(default_factory=list)
    children: list[Asset] = Field(default_factory=list)
    upstream: list[DependencyNeighbor] = Field(default_factory=list)
    downstream: list[DependencyNeighbor] = Field(default_factory=list)


class HierarchyResolver:
    """Builds HierarchyContext objects from the store."""

    def __init__(self, store: MaintenanceStore) -> None:
        self._store = store

    async def resolve(self, asset: Asset) -> HierarchyContext:
        """Gather the hierarchy context of an asset."""
        context = HierarchyContext(
            path=await self._store.get_asset_path(asset.id),
            siblings=await self._store.get_siblings(asset) if asset.parent_id else [],
            children=await self._store.get_children(asset.id),
            upstream=await self._store.upstream_neighbors(asset.id),
            downstream=await self._store.downstream_neighbors(asset.id),
        )
        logger.debug(
            "Hierarchy for %s: %d path, %d siblings, %d children, %d up, %d down",
            asset.name,
            len(context.path),
            len(context.siblings),
            len(context.children),
            len(context.upstream),
            len(context.downstream),
        )
        return context


def _icon(criticality: str) -> str:
    return _CRITICALITY_ICONS.get(criticality, "🟡")


def format_hierarchy_for_prompt(context: HierarchyContext, asset_name: str) -> str:
    """French summary of location, neighbours and dependencies."""
    text = ""
    if len(context.path) > 1:
        text += f"📍 EMPLACEMENT: {' → '.join(a.name for a in context.path)}\n\n"

    if context.siblings:
        text += "🔧 ÉQUIPEMENTS DANS LA MÊME ZONE:\n"
        text += "".join(f"   - {s.name}\n" for s in context.siblings) + "\n"

    if context.children:
        text += f"📦 SOUS-COMPOSANTS DE {asset_name}:\n"
        text += "".join(f"   - {c.name}\n" for c in context.children) + "\n"

    if context.upstream:
        text += f"⬆️ DÉPENDANCES AMONT (ce qui alimente {asset_name}):\n"
        text += "".join(
            f"   {_icon(u.criticality)} {u.asset.name} [upstream]\n" for u in context.upstream
        ) + "\n"

    if context.downstream:
        text += f"⬇️ DÉPENDANCES AVAL (ce qui dépend de {asset_name}):\n"
        text += "".join(
            f"   {_icon(d.criticality)} {d.asset.name} [downstream]\n" for d in context.downstream
        ) + "\n"

    return text


def generate_diagnostic_hints(context: HierarchyContext, asset_name: str) -> str:
    """Rule-based troubleshooting hints naming critical dependencies."""
    if not context.upstream and not context.downstream:
        return ""

    prompt = "\nRÈGLES DE DIAGNOSTIC SYSTÈME:\n"
    critical_up = [u.asset.name for u in context.upstream if u.criticality == "critical"]
    if critical_up:
        prompt += f"1. Si {asset_name} ne fonctionne pas, VÉRIFIE D'ABORD: {', '.join(critical_up)}\n"
    critical_down = [d.asset.name for d in context.downstream if d.criticality == "critical"]
    if critical_down:
        prompt += (
            f"2. Si {asset_name} est arrêté, AVERTIS que {', '.join(critical_down)} seront impactés\n"
        )
    prompt += "3. Pour toute panne, propose un diagnostic SÉQUENTIEL basé sur le flux du système\n"
    return prompt
