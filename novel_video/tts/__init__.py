"""Módulo TTS: síntesis de voz con tiempos por palabra."""

from .edge_tts import EdgeTTSClient
from .volcengine import VolcengineTTSClient, parse_frontend, repair_frontend_json

__all__ = ["EdgeTTSClient", "VolcengineTTSClient", "parse_frontend", "repair_frontend_json"]
