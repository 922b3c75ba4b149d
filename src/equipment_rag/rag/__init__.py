"""Question answering: intent, analysis, equipment resolution and context fusion."""

from src.equipment_rag.rag.aliases import AliasResolver, build_equipment_context
from src.equipment_rag.rag.dependency_graph import (
    DependencyChain,
    DependencyGraph,
    format_dependency_chain,
    format_process_chain,
)
from src.equipment_rag.rag.equipment_detector import EquipmentDetector, format_detected_equipment
from src.equipment_rag.rag.hierarchy import (
    HierarchyContext,
    HierarchyResolver,
    format_hierarchy_for_prompt,
    generate_diagnostic_hints,
)
from src.equipment_rag.rag.intent import IntentResult, detect_query_intent
from src.equipment_rag.rag.prompts import build_general_prompt, build_system_prompt
from src.equipment_rag.rag.query_analyzer import (
    AssetContext,
    QueryAnalyzer,
    QuickAnalysis,
    build_analysis_from_quick,
    needs_full_analysis,
    quick_analyze,
)
from src.equipment_rag.rag.service import QueryPlan, QueryService
from src.equipment_rag.rag.smart_search import SearchSummary, SmartSearch, summarize_results

__all__ = [
    "AliasResolver",
    "AssetContext",
    "DependencyChain",
    "DependencyGraph",
    "EquipmentDetector",
    "HierarchyContext",
    "HierarchyResolver",
    "IntentResult",
    "QueryAnalyzer",
    "QueryPlan",
    "QueryService",
    "QuickAnalysis",
    "SearchSummary",
    "SmartSearch",
    "build_analysis_from_quick",
    "build_equipment_context",
    "build_general_prompt",
    "build_system_prompt",
    "detect_query_intent",
    "format_dependency_chain",
    "format_detected_equipment",
    "format_hierarchy_for_prompt",
    "format_process_chain",
    "generate_diagnostic_hints",
    "needs_full_analysis",
    "quick_analyze",
    "summarize_results",
]
