"""Question answering over an equipment's documents and process context.

Flow for one message:

    resolve asset (given id, or EquipmentDetector) -> AliasResolver
    -> quick_analyze() [-> QueryAnalyzer when warranted]
    -> SmartSearch -> hierarchy and process-chain blocks
    -> system prompt -> streaming completion

prepare() does everything up to the prompt and raises NotFoundError for an
unknown asset before any output is produced. stream() then yields text
deltas followed by one metadata payload.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any

from pydantic import BaseModel, Field

from src.equipment_rag.config import EquipmentRAGConfig
from src.equipment_rag.errors import NotFoundError, PersistenceError
from src.equipment_rag.models import Asset, DetectionResult, QueryAnalysis, SearchResult
from src.equipment_rag.rag.aliases import AliasResolver, build_equipment_context
from src.equipment_rag.rag.dependency_graph import (
    DependencyGraph,
    format_dependency_chain,
    format_process_chain,
)
from src.equipment_rag.rag.equipment_detector import EquipmentDetector
from src.equipment_rag.rag.hierarchy import (
    HierarchyResolver,
    format_hierarchy_for_prompt,
    generate_diagnostic_hints,
)
from src.equipment_rag.rag.intent import detect_query_intent
from src.equipment_rag.rag.prompts import build_general_prompt, build_system_prompt
from src.equipment_rag.rag.query_analyzer import (
    AssetContext,
    QueryAnalyzer,
    build_analysis_from_quick,
    needs_full_analysis,
    quick_analyze,
)
from src.equipment_rag.rag.smart_search import (
    SmartSearch,
    format_search_context,
    summarize_results,
)
from src.equipment_rag.store.base import MaintenanceStore

logger = logging.getLogger(__name__)

MAX_COMPLETION_TOKENS = 2000
_HISTORY_ROLES = {"user", "assistant"}


class QueryPlan(BaseModel):
    """Everything needed to stream an answer."""

    asset: Asset | None = None
    detection: DetectionResult | None = None
    analysis: QueryAnalysis
    results: list[SearchResult] = Field(default_factory=list)
    messages: list[dict[str, str]] = Field(default_factory=list)

    @property
    def mode(self) -> str:
        if self.detection is not None:
            return self.detection.mode
        return "single" if self.asset else "none"


class QueryService:
    """Answers maintenance questions with retrieved, process-aware context.

    Args:
        store: Assets, aliases and dependency lookups.
        llm: Service exposing ainvoke(prompt) and
            streaming_completion(messages, ...) async generator.
        detector: Finds the asset when the caller did not pick one.
        aliases: Rewrites aliases to canonical names.
        analyzer: LLM query analysis.
        search: Context fusion.
        hierarchy: Location and one-hop dependency context.
        graph: Multi-hop and process-chain dependency context.
        config: Trigger length and history window.
    """

    def __init__(
        self,
        store: MaintenanceStore,
        llm: Any,
        detector: EquipmentDetector,
        aliases: AliasResolver,
        analyzer: QueryAnalyzer,
        search: SmartSearch,
        hierarchy: HierarchyResolver,
        graph: DependencyGraph,
        config: EquipmentRAGConfig,
    ) -> None:
        self._store = store
        self._llm = llm
        self._detector = detector
        self._aliases = aliases
        self._analyzer = analyzer
        self._search = search
        self._hierarchy = hierarchy
        self._graph = graph
        self._trigger_length = config.full_analysis_trigger_length
        self._history_window = config.history_window

    async def prepare(
        self,
        message: str,
        organization_id: str | None,
        asset_id: str | None = None,
        conversation_history: list[dict[str, Any]] | None = None,
    ) -> QueryPlan:
        """Resolve the asset, analyze the question and build the prompt.

        Raises:
            NotFoundError: If asset_id is given but not in the tenant scope.
        """
        detection: DetectionResult | None = None
        if asset_id:
            asset = await self._store.get_asset(asset_id, organization_id)
            if asset is None:
                raise NotFoundError(f"Asset not found: {asset_id}")
        else:
            detection = await self._detector.detect(message, organization_id)
            asset = None
            if detection.primary is not None:
                asset = await self._store.get_asset(detection.primary.equipment_id, organization_id)

        resolution = await self._aliases.preprocess(message, organization_id)
        query = resolution.modified_query

        quick = quick_analyze(query)
        if needs_full_analysis(quick, message, self._trigger_length):
            context = await self._asset_context(asset, organization_id)
            analysis = await self._analyzer.analyze(query, context, quick)
        else:
            analysis = build_analysis_from_quick(quick, asset.level if asset else None)
        logger.info(
            "Query analysis: intent=%s urgency=%s scope=%s format=%s",
            analysis.intent,
            analysis.urgency,
            analysis.scope,
            analysis.response_format,
        )

        results: list[SearchResult] = []
        if asset is None:
            system_prompt = build_general_prompt(analysis)
        else:
            intent = detect_query_intent(query)
            results = await self._search.search(
                asset.id, query, analysis, intent_filter=intent.document_types, asset_name=asset.name
            )
            system_prompt = build_system_prompt(
                asset,
                analysis,
                format_search_context(results),
                await self._hierarchy_text(asset),
            )
            system_prompt += build_equipment_context(resolution.resolved)
            system_prompt += await self._dependency_text(asset, analysis)

        messages = [{"role": "system", "content": system_prompt}]
        messages += _history(conversation_history, self._history_window)
        messages.append({"role": "user", "content": message})

        return QueryPlan(
            asset=asset, detection=detection, analysis=analysis, results=results, messages=messages
        )

    async def stream(self, plan: QueryPlan) -> AsyncIterator[dict[str, Any]]:
        """Yield ``{"content": delta}`` chunks, then the metadata payload."""
        temperature = 0.3 if plan.analysis.urgency == "emergency" else 0.7
        async for delta in self._llm.streaming_completion(
            plan.messages,
            model="reasoning",
            max_tokens=MAX_COMPLETION_TOKENS,
            temperature=temperature,
        ):
            if delta:
                yield {"content": delta}

        summary = summarize_results(plan.results)
        yield {
            "done": True,
            "analysis": {
                "intent": plan.analysis.intent,
                "urgency": plan.analysis.urgency,
                "response_format": plan.analysis.response_format,
            },
            "search": summary.model_dump(),
            "equipment": {
                "mode": plan.mode,
                "asset_id": plan.asset.id if plan.asset else None,
                "candidates": [
                    d.model_dump() for d in (plan.detection.detected if plan.detection else [])
                ],
            },
        }

    async def answer(
        self,
        message: str,
        organization_id: str | None,
        asset_id: str | None = None,
        conversation_history: list[dict[str, Any]] | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """prepare() then stream() in one call."""
        plan = await self.prepare(message, organization_id, asset_id, conversation_history)
        async for item in self.stream(plan):
            yield item

    # ── Context blocks ──────────────────────────────────────────────────

    async def _asset_context(self, asset: Asset | None, organization_id: str | None) -> AssetContext:
        if asset is None:
            return AssetContext(name="Unknown", level="unknown")
        children = await self._store.get_children(asset.id)
        aliases = [
            alias.alias
            for alias, owner in await self._store.list_aliases(organization_id)
            if owner.id == asset.id
        ]
        return AssetContext(
            name=asset.name,
            level=asset.level,
            category=asset.category,
            children=[c.name for c in children],
            aliases=aliases,
        )

    async def _hierarchy_text(self, asset: Asset) -> str:
        if asset.level not in ("equipment", "component"):
            return ""
        try:
            context = await self._hierarchy.resolve(asset)
        except PersistenceError:
            logger.warning("No hierarchy context for %s", asset.id, exc_info=True)
            return ""
        return format_hierarchy_for_prompt(context, asset.name) + generate_diagnostic_hints(
            context, asset.name
        )

    async def _dependency_text(self, asset: Asset, analysis: QueryAnalysis) -> str:
        if not (analysis.intent == "troubleshooting" or analysis.search_in_dependencies):
            return ""
        try:
            process = await self._graph.process_context(asset.id)
            text = format_process_chain(process, asset.name)
            if analysis.intent == "troubleshooting":
                chain = await self._graph.traverse(asset.id, asset.organization_id)
                rendered = format_dependency_chain(chain)
                if rendered:
                    text += "\n\n" + rendered
        except PersistenceError:
            logger.warning("No dependency context for %s", asset.id, exc_info=True)
            return ""
        return text


def _history(history: list[dict[str, Any]] | None, window: int) -> list[dict[str, str]]:
    turns = [
        {"role": str(turn["role"]), "content": str(turn.get("content", ""))}
        for turn in history or []
        if turn.get("role") in _HISTORY_ROLES
    ]
    return turns[-window:] if window > 0 else []
