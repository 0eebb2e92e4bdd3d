"""
Validate Stage — checks the draft against the length target.

A draft shorter than MIN_LENGTH_RATIO of the target is sent back to the model
once for expansion. The expansion is only kept when it is actually longer.
"""

import logging
import math

from errors import StageError
from state import StageConfig, WorkflowContext

logger = logging.getLogger(__name__)

_EXPAND_SYSTEM_PROMPT = """You are a professional YouTube scriptwriter.
Expand the script you are given. Keep its structure, voice and facts; add
depth, examples and transitions. Respond with the expanded script only."""


def count_words(text: str) -> int:
    return len(text.split())


async def validate_stage(context: WorkflowContext, config: StageConfig) -> WorkflowContext:
    """
    Annotate the draft with length statistics, expanding it if too short.

    Returns:
        A copy of the context with "draft" (possibly expanded) and
        "validation" = {word_count, target_words, percent_complete,
        expanded, meets_length}.

    Raises:
        StageError: The draft is empty (not retryable).
    """
    draft = (context.get("draft") or "").strip()
    if not draft:
        raise StageError("The generated script is empty.", kind="rejected")

    target_words = context["target_words"]
    min_words = math.ceil(target_words * config.settings.MIN_LENGTH_RATIO)
    word_count = count_words(draft)
    expanded = False

    if word_count < min_words:
        logger.info(f"Draft has {word_count}/{target_words} words, requesting expansion")
        candidate = await config.generate(
            f"Expand this script to about {target_words} words:\n\n{draft}",
            {
                "model": context.get("model"),
                "system": _EXPAND_SYSTEM_PROMPT,
                "temperature": 0.7,
                "max_tokens": 4096,
            },
        )
        candidate = (candidate or "").strip()
        candidate_words = count_words(candidate)
        if candidate_words > word_count:
            draft = candidate
            word_count = candidate_words
            expanded = True

    updated = dict(context)
    updated["draft"] = draft
    updated["validation"] = {
        "word_count": word_count,
        "target_words": target_words,
        "percent_complete": round(word_count / target_words * 100) if target_words else 100,
        "expanded": expanded,
        "meets_length": word_count >= min_words,
    }
    return WorkflowContext(**updated)
