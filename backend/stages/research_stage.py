"""
Research Stage — gathers current facts about the topic before writing.

Searches the web for the topic and asks the model to condense the results
into a short list of findings. The sources are kept alongside so they can be
cited later.
"""

import logging
from typing import List

from state import StageConfig, WorkflowContext
from tools.web_search import format_sources

logger = logging.getLogger(__name__)

MAX_SOURCES = 5

_SYSTEM_PROMPT = """You are a meticulous research assistant.
Extract the key facts from the provided sources that a scriptwriter would need.
Respond with 3 to 7 findings, one per line, each starting with "- ".
Only state facts supported by the sources."""


def _parse_findings(text: str) -> List[str]:
    findings = []
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        if line[0] in "-*•":
            line = line[1:].strip()
        if line:
            findings.append(line)
    return findings


async def research_stage(context: WorkflowContext, config: StageConfig) -> WorkflowContext:
    """
    Fill "research_findings" and "sources".

    An empty search result is not an error: the stage returns no findings and
    the script is written from the model's own knowledge.
    """
    sources = await config.search(context["topic"], max_results=MAX_SOURCES)

    findings: List[str] = []
    if sources:
        text = await config.generate(
            f"Topic: {context['topic']}\n\nSources:\n{format_sources(sources)}",
            {
                "model": context.get("model"),
                "system": _SYSTEM_PROMPT,
                "temperature": 0.2,
                "max_tokens": 1024,
            },
        )
        findings = _parse_findings(text)
    else:
        logger.info(f"No web sources found for topic '{context['topic']}'")

    updated = dict(context)
    updated["research_findings"] = findings
    updated["sources"] = list(sources)
    return WorkflowContext(**updated)
