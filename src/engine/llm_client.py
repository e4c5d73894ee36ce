"""
LLM client -- one ``call_llm`` entry point over several providers.

  mock       echoes the prompt (offline dev / tests)
  openai     Chat Completions, optional JSON response format
  anthropic  Messages API

The planner asks for JSON; ``extract_json`` pulls the first object out of
whatever the model returned (bare, fenced, or surrounded by prose).
"""
from __future__ import annotations

import json
import re
from typing import Any, Callable

from src.core.config import get_settings
from src.core.logging import get_logger

logger = get_logger(__name__)

OPENAI_MODEL = "gpt-4o-mini"
ANTHROPIC_MODEL = "claude-3-haiku-20240307"
DEFAULT_SYSTEM = "You are a precise freight analytics assistant."
_MAX_TOKENS = 512

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL)


def _require_key(value: str, env_name: str) -> str:
    if not value:
        raise RuntimeError(f"{env_name} is not set.  Add it to your .env file or environment.")
    return value


def _mock(prompt: str, system: str, json_mode: bool) -> str:
    logger.info("LLM mock mode -- echoing prompt")
    return f"[MOCK] {prompt[:200]}"


def _openai(prompt: str, system: str, json_mode: bool) -> str:
    api_key = _require_key(get_settings().openai_api_key, "OPENAI_API_KEY")
    try:
        import openai  # type: ignore[import-untyped]
    except ImportError as exc:
        raise RuntimeError("The 'openai' package is not installed.  Run: pip install '.[llm]'") from exc

    kwargs: dict[str, Any] = {}
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}
    response = openai.OpenAI(api_key=api_key).chat.completions.create(
        model=OPENAI_MODEL,
        messages=[
            {"role": "system", "content": system},
            {"role": "user", "content": prompt},
        ],
        temperature=0.0,
        max_tokens=_MAX_TOKENS,
        **kwargs,
    )
    return response.choices[0].message.content or ""


def _anthropic(prompt: str, system: str, json_mode: bool) -> str:
    api_key = _require_key(get_settings().anthropic_api_key, "ANTHROPIC_API_KEY")
    try:
        import anthropic  # type: ignore[import-untyped]
    except ImportError as exc:
        raise RuntimeError("The 'anthropic' package is not installed.  Run: pip install '.[llm]'") from exc

    if json_mode:
        system = f"{system} Respond with a single JSON object only."
    response = anthropic.Anthropic(api_key=api_key).messages.create(
        model=ANTHROPIC_MODEL,
        max_tokens=_MAX_TOKENS,
        system=system,
        messages=[{"role": "user", "content": prompt}],
    )
    return response.content[0].text if response.content else ""


_PROVIDERS: dict[str, Callable[[str, str, bool], str]] = {
    "mock": _mock,
    "openai": _openai,
    "anthropic": _anthropic,
}


def call_llm(
    prompt: str,
    provider: str | None = None,
    system: str = DEFAULT_SYSTEM,
    json_mode: bool = False,
) -> str:
    """Send *prompt* to *provider* (default: ``settings.llm_provider``)."""
    name = (provider or get_settings().llm_provider).lower()
    fn = _PROVIDERS.get(name)
    if fn is None:
        raise NotImplementedError(
            f"LLM provider '{name}' is not supported.  Choose from: {', '.join(_PROVIDERS)}"
        )
    logger.info("Calling LLM provider=%s json=%s prompt_len=%d", name, json_mode, len(prompt))
    text = fn(prompt, system, json_mode)
    logger.info("LLM response (%d chars)", len(text))
    return text


def extract_json(text: str) -> dict[str, Any]:
    """First JSON object in *text*.  Raises ``ValueError`` when there is none."""
    text = text.strip()
    fenced = _FENCE_RE.search(text)
    if fenced:
        text = fenced.group(1)
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end < start:
        raise ValueError("No JSON object in LLM response")
    try:
        return json.loads(text[start:end + 1])
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in LLM response: {exc}") from exc
