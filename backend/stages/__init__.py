"""Pipeline stage functions for ScriptForge."""

from .research_stage import research_stage
from .generate_stage import generate_stage
from .validate_stage import validate_stage
from .enrich_stage import enrich_stage

__all__ = ["research_stage", "generate_stage", "validate_stage", "enrich_stage"]
