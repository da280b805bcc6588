"""Módulo LLM para generación de narraciones."""

from .ark import ArkTextClient
from .openrouter import OpenRouterClient

__all__ = ["ArkTextClient", "OpenRouterClient"]
