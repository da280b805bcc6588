"""Modelos, contratos de proveedores y repositorio."""

from .contracts import (
    ImageGenerator,
    ProviderSet,
    SpeechResult,
    SpeechSynthesizer,
    TextGenerator,
    VideoGenerator,
    WordTiming,
)
from .repository import NovelRepository

__all__ = [
    "ImageGenerator",
    "NovelRepository",
    "ProviderSet",
    "SpeechResult",
    "SpeechSynthesizer",
    "TextGenerator",
    "VideoGenerator",
    "WordTiming",
]
