"""Base agent class for the intake LLM collaborators.

Every intake agent (turn interpreter, area detector, vision analyzer,
informal place classifier) subclasses BaseAgent and gets:

- Gemini access through ``infra.gemini_client.get_model``
- ``AgentResult`` returns instead of exceptions
- a per-agent call timeout, latency and token accounting
- prompts made of text and inline image parts
"""

import asyncio
import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Optional

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0

# Models sometimes wrap JSON in a markdown fence even in JSON mode
_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*(.*?)\s*```\s*$", re.DOTALL)


# ---------------------------------------------------------------------------
# Result type
# ---------------------------------------------------------------------------

@dataclass
class AgentResult:
    """Outcome of one agent call. Check ``ok`` before reading ``data``.

    Attributes:
        ok: Whether the call produced usable output.
        data: Response text, or the parsed JSON for ``generate_json``.
        error: Failure description when ``ok`` is False.
        tokens_used: Prompt plus completion tokens.
        latency_ms: Wall-clock duration of the call.
    """

    ok: bool
    data: Any = None
    error: Optional[str] = None
    tokens_used: int = 0
    latency_ms: int = 0

    @classmethod
    def success(cls, data: Any, tokens_used: int = 0, latency_ms: int = 0) -> "AgentResult":
        return cls(ok=True, data=data, tokens_used=tokens_used, latency_ms=latency_ms)

    @classmethod
    def failure(cls, error: str, latency_ms: int = 0) -> "AgentResult":
        return cls(ok=False, error=error, latency_ms=latency_ms)


def image_part(data: bytes, mimetype: str) -> dict:
    """Inline image part for a multimodal prompt."""
    return {"mime_type": mimetype or "image/jpeg", "data": data}


def _token_count(response) -> int:
    usage = getattr(response, "usage_metadata", None)
    if not usage:
        return 0
    prompt = getattr(usage, "prompt_token_count", 0) or 0
    completion = getattr(usage, "candidates_token_count", 0) or 0
    return prompt + completion


def _strip_fence(text: str) -> str:
    match = _FENCE_RE.match(text or "")
    return match.group(1) if match else text


# ---------------------------------------------------------------------------
# Base agent
# ---------------------------------------------------------------------------

class BaseAgent:
    """Shared Gemini plumbing for the intake agents.

    Example::

        class AreaDetectorAgent(BaseAgent):
            def __init__(self):
                super().__init__(agent_name="area_detector", model_name="...", temperature=0.0)

            async def detect(self, text: str) -> AreaDetection:
                result = await self.generate_json(prompt=...)
                ...
    """

    def __init__(
        self,
        agent_name: str,
        model_name: str = "gemini-3-flash-preview",
        temperature: float = 0.2,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        self.agent_name = agent_name
        self.model_name = model_name
        self.temperature = temperature
        self.timeout_seconds = timeout_seconds

    async def generate(
        self,
        prompt: str | list,
        system_instruction: Optional[str] = None,
        json_mode: bool = False,
        response_schema: dict | None = None,
    ) -> AgentResult:
        """Run one model call.

        Args:
            prompt: Prompt text, or a list of parts (text and ``image_part`` dicts).
            system_instruction: Optional system instruction.
            json_mode: Ask the model for JSON output.
            response_schema: JSON Schema for structured output (JSON mode only).

        Returns:
            ``AgentResult`` carrying the raw response text.
        """
        started = time.monotonic()
        try:
            from vicebot.infra.gemini_client import get_model

            model = get_model(
                model_name=self.model_name,
                temperature=self.temperature,
                json_mode=json_mode,
                response_schema=response_schema,
                system_instruction=system_instruction,
            )
            response = await asyncio.wait_for(
                model.generate_content_async(prompt),
                timeout=self.timeout_seconds,
            )
            text = response.text
        except asyncio.TimeoutError:
            latency_ms = int((time.monotonic() - started) * 1000)
            logger.warning("[%s] Timed out after %dms", self.agent_name, latency_ms)
            return AgentResult.failure(f"timeout after {self.timeout_seconds}s", latency_ms=latency_ms)
        except Exception as exc:
            latency_ms = int((time.monotonic() - started) * 1000)
            logger.error("[%s] Generation failed after %dms: %s", self.agent_name, latency_ms, exc)
            return AgentResult.failure(str(exc), latency_ms=latency_ms)

        latency_ms = int((time.monotonic() - started) * 1000)
        tokens = _token_count(response)
        logger.info("[%s] tokens=%d latency=%dms", self.agent_name, tokens, latency_ms)
        return AgentResult.success(data=text, tokens_used=tokens, latency_ms=latency_ms)

    async def generate_json(
        self,
        prompt: str | list,
        system_instruction: Optional[str] = None,
        response_schema: dict | None = None,
    ) -> AgentResult:
        """Like ``generate`` in JSON mode, with ``data`` parsed.

        A response that is not valid JSON becomes a failure.
        """
        result = await self.generate(
            prompt=prompt,
            system_instruction=system_instruction,
            json_mode=True,
            response_schema=response_schema,
        )
        if not result.ok:
            return result

        try:
            parsed = json.loads(_strip_fence(result.data))
        except (json.JSONDecodeError, TypeError) as exc:
            logger.warning("[%s] Invalid JSON (%s): %.200s", self.agent_name, exc, result.data)
            return AgentResult.failure(f"JSON parse error: {exc}", latency_ms=result.latency_ms)
        return AgentResult.success(data=parsed, tokens_used=result.tokens_used, latency_ms=result.latency_ms)
