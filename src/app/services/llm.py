"""LLM access for the maintenance assistant via LiteLLM Router.

Two OpenAI model groups: "reasoning" streams answers to technicians and
"fast" serves the single-shot JSON prompts. User turns are screened for
prompt injection before every call, and the current organization rides
along as call metadata.

The equipment_rag core only depends on ainvoke(prompt) and
streaming_completion(messages, ...).
"""

from __future__ import annotations

import re
from typing import AsyncGenerator

import structlog
from litellm import Router

from src.app.config import get_settings
from src.app.core.tenant import get_current_tenant

logger = structlog.get_logger(__name__)

# ── Prompt Injection Detection ────────────────────────────────────────────────

# Patterns that indicate prompt injection attempts (English and French)
_INJECTION_PATTERNS: list[tuple[str, re.Pattern]] = [
    (
        "instruction_override",
        re.compile(
            r"ignore\s+(all\s+)?previous\s+instructions|"
            r"disregard\s+(all\s+)?(your\s+)?instructions|"
            r"forget\s+(all\s+)?(your\s+)?instructions|"
            r"override\s+(all\s+)?(your\s+)?instructions|"
            r"ignore[rz]?\s+(toutes\s+)?les\s+instructions(\s+précédentes)?|"
            r"oublie[rz]?\s+(toutes\s+)?(tes|vos)\s+instructions",
            re.IGNORECASE,
        ),
    ),
    (
        "system_prompt_exfiltration",
        re.compile(
            r"(reveal|show|display|output|print|repeat)\s+(your\s+)?(system\s+prompt|instructions|prompt)|"
            r"system\s+prompt|"
            r"repeat\s+everything\s+above|"
            r"output\s+your\s+system|"
            r"what\s+are\s+your\s+instructions|"
            r"(affiche|montre|révèle)[rz]?\s+(ton|votre)\s+prompt",
            re.IGNORECASE,
        ),
    ),
    (
        "role_hijacking",
        re.compile(
            r"you\s+are\s+now\s+|"
            r"pretend\s+(to\s+be|you\s+are)|"
            r"from\s+now\s+on\s+you\s+are|"
            r"assume\s+the\s+role\s+of",
            re.IGNORECASE,
        ),
    ),
    (
        "control_characters",
        re.compile(
            r"[\x00-\x08\x0b\x0c\x0e-\x1f]{3,}",  # 3+ control chars in sequence
        ),
    ),
]


def detect_prompt_injection(text: str) -> tuple[bool, str | None]:
    """Return (True, pattern_name) for the first injection pattern found in text."""
    for pattern_name, pattern in _INJECTION_PATTERNS:
        if pattern.search(text):
            logger.warning(
                "prompt_injection_detected",
                pattern=pattern_name,
                text_preview=text[:100],
            )
            return True, pattern_name
    return False, None


def _strip_injections(content: str) -> str:
    for _, pattern in _INJECTION_PATTERNS:
        content = pattern.sub("[removed]", content)
    return content


def sanitize_messages(messages: list[dict]) -> list[dict]:
    """Replace injection fragments in conversation turns with "[removed]".

    System prompts are built server-side and pass through untouched. User
    questions and replayed history turns are screened, since history comes
    back from the client.
    """
    sanitized = []
    for msg in messages:
        content = msg.get("content") or ""
        if msg.get("role") == "system" or not detect_prompt_injection(content)[0]:
            sanitized.append(msg)
            continue
        cleaned = _strip_injections(content)
        logger.warning(
            "prompt_injection_sanitized",
            role=msg.get("role"),
            original_length=len(content),
            cleaned_length=len(cleaned),
        )
        sanitized.append({**msg, "content": cleaned})
    return sanitized


def _organization_metadata() -> dict:
    try:
        tenant = get_current_tenant()
    except RuntimeError:
        return {}
    return {"organization_id": tenant.organization_id, "user_id": tenant.user_id}


# ── LLM Service ──────────────────────────────────────────────────────────────


class LLMService:
    """Maintenance assistant LLM access through a LiteLLM Router.

    "reasoning" answers technician questions, "fast" runs the JSON prompts
    (query analysis, document classification, metadata extraction).
    """

    def __init__(self) -> None:
        settings = get_settings()

        if not settings.OPENAI_API_KEY:
            logger.warning("OPENAI_API_KEY not configured -- LLM service will be unavailable")
            self.router = None
            return

        self.router = Router(
            model_list=[
                {
                    "model_name": group,
                    "litellm_params": {"model": model, "api_key": settings.OPENAI_API_KEY},
                }
                for group, model in (
                    ("reasoning", settings.LLM_ANSWER_MODEL),
                    ("fast", settings.LLM_ANALYSIS_MODEL),
                )
            ],
            num_retries=settings.LLM_MAX_RETRIES,
            timeout=settings.LLM_TIMEOUT,
        )

    async def _acompletion(self, messages: list[dict], **params):
        if not self.router:
            raise RuntimeError("No LLM API keys configured")
        return await self.router.acompletion(
            messages=sanitize_messages(messages),
            metadata=_organization_metadata(),
            **params,
        )

    async def ainvoke(
        self,
        prompt: str,
        max_tokens: int = 1024,
        temperature: float = 0.1,
    ) -> str:
        """Run a single JSON-producing prompt on the fast model group.

        Returns:
            The response text, empty when the model returned no content.

        Raises:
            RuntimeError: If no LLM API key is configured.
        """
        response = await self._acompletion(
            [{"role": "user", "content": prompt}],
            model="fast",
            max_tokens=max_tokens,
            temperature=temperature,
        )
        logger.debug("llm_prompt_completed", model=response.model)
        return response.choices[0].message.content or ""

    async def streaming_completion(
        self,
        messages: list[dict],
        model: str = "reasoning",
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> AsyncGenerator[str, None]:
        """Stream an answer, yielding content deltas for SSE.

        Raises:
            RuntimeError: If no LLM API key is configured.
        """
        response = await self._acompletion(
            messages,
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            stream=True,
        )

        async for chunk in response:
            if chunk.choices and chunk.choices[0].delta.content:
                yield chunk.choices[0].delta.content


_llm_service: LLMService | None = None


def get_llm_service() -> LLMService:
    """Get or create the LLM service singleton."""
    global _llm_service
    if _llm_service is None:
        _llm_service = LLMService()
    return _llm_service
