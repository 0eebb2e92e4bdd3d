"""
Enrich Stage — publishing metadata for the finished draft.

Fills hook, hook variants, description and tags. Hook, description and tags
come from the sections the Generate stage kept; hook variants are a separate,
short model call.
"""

import re
from typing import List, Optional

from state import StageConfig, WorkflowContext

MAX_TAGS = 15
HOOK_VARIANT_COUNT = 3

_HOOK_SYSTEM_PROMPT = f"""You write attention-grabbing opening lines for YouTube videos.
Given a script, write {HOOK_VARIANT_COUNT} alternative hooks, one per line.
No numbering, no quotes, no commentary."""

_NUMBERING_RE = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s*")


def parse_tags(text: Optional[str]) -> List[str]:
    """
    Parse tags written either as hashtags or as a comma-separated list.

    Duplicates are dropped (case-insensitive), order is kept.
    """
    if not text:
        return []
    if "#" in text:
        raw = re.findall(r"#([\w-]+)", text)
    else:
        raw = re.split(r"[,\n]", text)

    tags: List[str] = []
    seen = set()
    for tag in raw:
        tag = tag.strip().strip("#").strip()
        if tag and tag.lower() not in seen:
            seen.add(tag.lower())
            tags.append(tag)
    return tags[:MAX_TAGS]


def _parse_variants(text: str) -> List[str]:
    variants = []
    for line in text.splitlines():
        line = _NUMBERING_RE.sub("", line).strip().strip('"')
        if line:
            variants.append(line)
    return variants[:HOOK_VARIANT_COUNT]


def _first_sentence(text: str) -> Optional[str]:
    text = text.strip()
    if not text:
        return None
    match = re.match(r"(.+?[.!?])(\s|$)", text, re.DOTALL)
    return (match.group(1) if match else text.splitlines()[0]).strip()


async def enrich_stage(context: WorkflowContext, config: StageConfig) -> WorkflowContext:
    """Return a copy of the context with hook, hook_variants, description and tags."""
    sections = context.get("sections") or {}
    draft = context.get("draft") or ""

    hook = sections.get("hook") or context.get("hook_hint") or _first_sentence(draft)

    text = await config.generate(
        f"Current hook: {hook}\n\nScript:\n{draft}",
        {
            "model": context.get("model"),
            "system": _HOOK_SYSTEM_PROMPT,
            "temperature": 0.9,
            "max_tokens": 512,
        },
    )

    updated = dict(context)
    updated["hook"] = hook
    updated["hook_variants"] = [v for v in _parse_variants(text or "") if v != hook]
    updated["description"] = sections.get("description") or context.get("description")
    updated["tags"] = parse_tags(sections.get("tags")) or list(context.get("tags") or [])
    return WorkflowContext(**updated)
