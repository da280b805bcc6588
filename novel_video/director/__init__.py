"""Módulo director: del JSON del LLM a escenas, planos, personajes y objetos."""

from .converter import NarrationBatch, build_narration_batch, convert_to_scenes_and_shots
from .entities import CHARACTER_FIELDS, PROP_FIELDS, ImagePromptBuilder, extract_entities
from .parser import NarrationParser, ValidationResult

__all__ = [
    "CHARACTER_FIELDS",
    "ImagePromptBuilder",
    "NarrationBatch",
    "NarrationParser",
    "PROP_FIELDS",
    "ValidationResult",
    "build_narration_batch",
    "convert_to_scenes_and_shots",
    "extract_entities",
]
