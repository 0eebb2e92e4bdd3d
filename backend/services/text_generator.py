"""
Text Generator — the AI-text collaborator used by every pipeline stage.

`generate(prompt, params)` returns plain text or raises. It has no retry
logic of its own; retries belong to the workflow orchestrator. Provider
failures surface as UpstreamUnavailable (retryable), configuration problems
as a non-retryable StageError.
"""

import logging
from typing import Any, Optional

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from config import settings
from errors import StageError, UpstreamUnavailable

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# LLM factory: request model aliases to LangChain chat models
# ---------------------------------------------------------------------------

_MODEL_MAP = {
    "claude-3-5-haiku": lambda temperature, max_tokens: ChatAnthropic(
        model="claude-3-5-haiku-20241022",
        api_key=settings.ANTHROPIC_API_KEY,
        temperature=temperature,
        max_tokens=max_tokens,
    ),
    "claude-sonnet-4-5": lambda temperature, max_tokens: ChatAnthropic(
        model="claude-sonnet-4-5-20250929",
        api_key=settings.ANTHROPIC_API_KEY,
        temperature=temperature,
        max_tokens=max_tokens,
    ),
    "gpt-4o": lambda temperature, max_tokens: ChatOpenAI(
        model="gpt-4o",
        api_key=settings.OPENAI_API_KEY,
        temperature=temperature,
        max_tokens=max_tokens,
    ),
}

SUPPORTED_MODELS = tuple(_MODEL_MAP.keys())


def _get_llm(model_name: str, temperature: float, max_tokens: int) -> Any:
    """Instantiate a LangChain chat model by alias."""
    factory = _MODEL_MAP.get(model_name)
    if factory is None:
        raise StageError(
            f"Unknown model '{model_name}'. Supported models: {list(SUPPORTED_MODELS)}",
            kind="configuration",
        )
    try:
        return factory(temperature, max_tokens)
    except Exception as exc:  # noqa: BLE001
        logger.error(f"Could not initialise model {model_name}: {exc}")
        raise StageError(
            f"The AI model '{model_name}' is not configured on this server.",
            kind="configuration",
        ) from exc


def _response_text(response: Any) -> str:
    """Flatten a chat model response (plain string or content blocks) to text."""
    content = getattr(response, "content", response)
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, dict):
                parts.append(block.get("text", ""))
            else:
                parts.append(str(block))
        return "".join(parts)
    return str(content or "")


async def generate(prompt: str, params: Optional[dict] = None) -> str:
    """
    Generate text for a prompt.

    Args:
        prompt: The user prompt.
        params: Optional dict with "model", "system", "temperature",
                "max_tokens".

    Returns:
        The stripped response text (may be empty; callers decide what that means).

    Raises:
        UpstreamUnavailable: The provider call failed.
        StageError:          Unknown or unconfigured model.
    """
    params = params or {}
    model_name = params.get("model") or settings.DEFAULT_MODEL
    llm = _get_llm(
        model_name,
        params.get("temperature", 0.7),
        params.get("max_tokens", 4096),
    )

    messages = []
    if params.get("system"):
        messages.append(SystemMessage(content=params["system"]))
    messages.append(HumanMessage(content=prompt))

    try:
        response = await llm.ainvoke(messages)
    except Exception as exc:  # noqa: BLE001
        logger.warning(f"AI provider call to {model_name} failed: {exc}")
        raise UpstreamUnavailable(
            f"The AI provider ({model_name}) is temporarily unavailable."
        ) from exc

    return _response_text(response).strip()
