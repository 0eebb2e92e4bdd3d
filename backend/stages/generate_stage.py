"""
Generate Stage — writes the script draft.

The prompt combines topic, title, channel context, length target, the
optional hook hint and any research findings. The model is asked to answer in
[HOOK] / [SCRIPT] / [DESCRIPTION] / [TAGS] sections; the script body becomes
the draft and the remaining sections are kept for the Enrich stage.
"""

import re
from typing import Dict

from errors import StageError
from state import StageConfig, WorkflowContext


_SYSTEM_PROMPT = """You are a professional YouTube scriptwriter.
You write spoken-word scripts that are clear, engaging and easy to read aloud.

Respond in EXACTLY this format:

[HOOK]
<one or two sentences that grab attention in the first five seconds>

[SCRIPT]
<the full spoken script>

[DESCRIPTION]
<a short video description>

[TAGS]
<comma-separated tags>"""

_SECTION_RE = re.compile(r"^\s*\[(HOOK|SCRIPT|DESCRIPTION|TAGS)\]\s*$", re.IGNORECASE | re.MULTILINE)


def parse_sections(text: str) -> Dict[str, str]:
    """
    Split a model response into its bracketed sections.

    Returns:
        Lower-cased section name -> stripped body. Text outside any marker is
        treated as the script when no [SCRIPT] section exists.
    """
    matches = list(_SECTION_RE.finditer(text))
    if not matches:
        return {"script": text.strip()}

    sections: Dict[str, str] = {}
    for i, match in enumerate(matches):
        end = matches[i + 1].start() if i + 1 < len(matches) else len(text)
        sections[match.group(1).lower()] = text[match.end():end].strip()

    if not sections.get("script"):
        leading = text[: matches[0].start()].strip()
        if leading:
            sections["script"] = leading
    return sections


def _build_prompt(context: WorkflowContext) -> str:
    parts = [f"Write a video script about: {context['topic']}"]
    if context.get("title") and context["title"] != context["topic"]:
        parts.append(f"Working title: {context['title']}")

    channel = context.get("channel_context") or {}
    if channel.get("name"):
        parts.append(f"Channel: {channel['name']}")
    if channel.get("target_audience"):
        parts.append(f"Target audience: {channel['target_audience']}")
    if channel.get("tone"):
        parts.append(f"Tone: {channel['tone']}")

    parts.append(
        f"Target length: about {context['target_words']} words of spoken script."
    )
    if context.get("hook_hint"):
        parts.append(f"Open with this hook or a close variation of it: {context['hook_hint']}")

    findings = context.get("research_findings") or []
    if findings:
        facts = "\n".join(f"- {f}" for f in findings)
        parts.append(f"Use these researched facts where relevant:\n{facts}")

    return "\n\n".join(parts)


async def generate_stage(context: WorkflowContext, config: StageConfig) -> WorkflowContext:
    """
    Produce the draft.

    Returns:
        A copy of the context with "draft" and "sections" set.

    Raises:
        StageError: The model returned no script text (retryable).
    """
    text = await config.generate(
        _build_prompt(context),
        {
            "model": context.get("model"),
            "system": _SYSTEM_PROMPT,
            "temperature": 0.7,
            "max_tokens": 4096,
        },
    )
    sections = parse_sections(text or "")
    draft = sections.pop("script", "")
    if not draft:
        raise StageError(
            "The AI model returned an empty script.",
            kind="empty_response",
            retryable=True,
        )

    updated = dict(context)
    updated["draft"] = draft
    updated["sections"] = sections
    return WorkflowContext(**updated)
