"""Query understanding: cheap heuristics first, LLM analysis when warranted.

quick_analyze() runs on every message at no cost. The LLM analyzer is only
called when needs_full_analysis() says the question is a fault report, an
emergency or simply long. Any LLM failure degrades to an analysis built
from the quick heuristics.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from src.equipment_rag.llm_json import Parsed, parse_json_object
from src.equipment_rag.models import QueryAnalysis, QueryIntent, QueryUrgency, ResponseFormat

logger = logging.getLogger(__name__)

# French, Darija (latin script) and English distress phrases
EMERGENCY_PATTERNS = [
    "ne marche pas",
    "ne fonctionne pas",
    "ma khdamch",
    "wa9ef",
    "arrêté",
    "en panne",
    "bloqué",
    "urgent",
    "erreur",
    "alarme",
    "défaut",
    "mochkil",
    "khsara",
    "problème",
    "cassé",
    "broken",
    "down",
    "stopped",
]

# Checked in order; the first intent whose keywords appear wins
INTENT_KEYWORDS: list[tuple[QueryIntent, list[str]]] = [
    (
        "troubleshooting",
        ["problème", "panne", "erreur", "ne marche", "diagnostic", "mochkil", "défaut", "alarme"],
    ),
    (
        "maintenance",
        ["maintenance", "entretien", "vidange", "graissage", "préventif", "périodique"],
    ),
    (
        "installation",
        ["installer", "installation", "mise en service", "configurer", "brancher", "démarrage"],
    ),
    ("parts", ["pièce", "référence", "code", "rechange", "commander", "article"]),
    ("specs", ["caractéristique", "spec", "dimension", "puissance", "capacité", "poids"]),
    ("procedure", ["comment", "kifach", "procédure", "étapes", "faire", "méthode"]),
]

COMPONENT_PATTERNS = [
    "moteur",
    "pompe",
    "vanne",
    "capteur",
    "relais",
    "contacteur",
    "fusible",
    "courroie",
    "roulement",
    "joint",
    "filtre",
    "vérin",
    "compresseur",
    "variateur",
    "automate",
    "plc",
    "disjoncteur",
    "transformateur",
    "résistance",
    "condensateur",
]

ERROR_CODE_RE = re.compile(r"\b[A-Z]{1,3}[-_]?\d{1,4}\b", re.IGNORECASE)

_FORMAT_BY_INTENT: dict[str, ResponseFormat] = {
    "troubleshooting": "diagnostic",
    "procedure": "steps",
    "installation": "steps",
    "maintenance": "steps",
    "parts": "table",
    "specs": "list",
}

_VALID_SCOPES = {"component", "equipment", "subsystem", "line", "site", "unknown"}

ANALYSIS_PROMPT = """You are an industrial maintenance query analyzer. Analyze this user question to determine the best search and response strategy.

CURRENT CONTEXT:
- Asset: {name}
- Level: {level}
- Category: {category}
{children}{aliases}
USER QUESTION:
"{query}"

Analyze and respond with JSON:
{{
  "intent": "troubleshooting|maintenance|installation|parts|specs|procedure|general",
  "urgency": "emergency|planning|information",
  "scope": "component|equipment|subsystem|line|site|unknown",

  "equipment_mentioned": ["list of equipment names mentioned"],
  "components_mentioned": ["list of components like motor, pump, valve"],
  "error_codes": ["any error codes like E01, F23"],
  "symptoms": ["described symptoms like 'ne démarre pas', 'bruit anormal'"],

  "search_document_types": ["manual", "installation", "catalogue", "schematic"],
  "search_in_schematics": true/false,
  "search_in_dependencies": true/false,

  "response_format": "steps|list|table|explanation|diagnostic",
  "include_safety_warning": true/false,
  "include_parts_list": true/false,

  "confidence": 0.0-1.0,
  "reasoning": "Brief explanation of analysis"
}}

GUIDELINES:
- "troubleshooting" + "emergency" → search schematics, dependencies, use diagnostic format
- "maintenance" → search manual, use steps format
- "parts" → search catalogue, use table format
- "installation" → search installation docs, use steps format
- Safety warning for: electrical work, high pressure, hot surfaces, moving parts
- Parts list for: repairs, replacements, maintenance"""


class QuickAnalysis(BaseModel):
    """Heuristic reading of a query, computed without any API call."""

    intent: QueryIntent = "general"
    urgency: QueryUrgency = "information"
    components_mentioned: list[str] = Field(default_factory=list)
    error_codes: list[str] = Field(default_factory=list)
    response_format: ResponseFormat = "explanation"
    search_in_schematics: bool = False
    search_in_dependencies: bool = False
    include_safety_warning: bool = False
    include_parts_list: bool = False


class AssetContext(BaseModel):
    """Asset facts used to seed the LLM analysis."""

    name: str
    level: str = "equipment"
    category: str | None = None
    children: list[str] = Field(default_factory=list)
    aliases: list[str] = Field(default_factory=list)


def quick_analyze(query: str) -> QuickAnalysis:
    """Infer intent, urgency, components and error codes from keywords."""
    q = query.lower()

    intent: QueryIntent = "general"
    for candidate, keywords in INTENT_KEYWORDS:
        if any(k in q for k in keywords):
            intent = candidate
            break

    components = [c for c in COMPONENT_PATTERNS if c in q]
    error_codes = list(dict.fromkeys(m.upper() for m in ERROR_CODE_RE.findall(query)))

    return QuickAnalysis(
        intent=intent,
        urgency="emergency" if any(p in q for p in EMERGENCY_PATTERNS) else "information",
        components_mentioned=components,
        error_codes=error_codes,
        response_format=_FORMAT_BY_INTENT.get(intent, "explanation"),
        search_in_schematics=intent == "troubleshooting" or bool(components),
        search_in_dependencies=intent == "troubleshooting",
        include_safety_warning=intent in ("troubleshooting", "installation"),
        include_parts_list=intent in ("parts", "maintenance"),
    )


def needs_full_analysis(quick: QuickAnalysis, message: str, trigger_length: int = 100) -> bool:
    """Whether a message deserves the LLM analyzer."""
    return (
        quick.intent == "troubleshooting"
        or quick.urgency == "emergency"
        or len(message) > trigger_length
    )


def build_analysis_from_quick(quick: QuickAnalysis, asset_level: str | None) -> QueryAnalysis:
    """Expand a quick analysis into a full QueryAnalysis."""
    scope = asset_level if asset_level in _VALID_SCOPES else "equipment"
    return QueryAnalysis(
        intent=quick.intent,
        urgency=quick.urgency,
        scope=scope,
        components_mentioned=list(quick.components_mentioned),
        error_codes=list(quick.error_codes),
        search_document_types=["manual"],
        search_in_schematics=quick.search_in_schematics,
        search_in_dependencies=quick.search_in_dependencies,
        response_format=quick.response_format,
        include_safety_warning=quick.include_safety_warning,
        include_parts_list=quick.include_parts_list,
        confidence=0.7,
        reasoning="Quick local analysis",
    )


def default_analysis() -> QueryAnalysis:
    return QueryAnalysis(reasoning="Default analysis")


class QueryAnalyzer:
    """LLM-backed query analysis with a heuristic fallback.

    Args:
        llm: LLM instance with an async ainvoke(prompt) method.
    """

    def __init__(self, llm: Any) -> None:
        self._llm = llm

    async def analyze(
        self, query: str, context: AssetContext, quick: QuickAnalysis | None = None
    ) -> QueryAnalysis:
        """Analyze a query in the context of an asset.

        Args:
            query: Alias-resolved user question.
            context: Asset facts inserted into the prompt.
            quick: Heuristic analysis used on failure; computed when omitted.

        Returns:
            QueryAnalysis from the LLM, or built from the quick analysis.
        """
        quick = quick or quick_analyze(query)
        prompt = ANALYSIS_PROMPT.format(
            name=context.name,
            level=context.level,
            category=context.category or "unknown",
            children=f"- Contains: {', '.join(context.children)}\n" if context.children else "",
            aliases=f"- Also known as: {', '.join(context.aliases)}\n" if context.aliases else "",
            query=query,
        )

        try:
            response = await self._llm.ainvoke(prompt)
        except Exception:
            logger.warning("Full query analysis failed, using quick analysis", exc_info=True)
            return build_analysis_from_quick(quick, context.level)

        result = parse_json_object(response)
        if not isinstance(result, Parsed):
            logger.warning("Unparseable query analysis (%s), using quick analysis", result.reason)
            return build_analysis_from_quick(quick, context.level)

        try:
            return QueryAnalysis.model_validate(result.data)
        except ValidationError:
            logger.warning("Query analysis failed validation, using quick analysis", exc_info=True)
            return build_analysis_from_quick(quick, context.level)
