"""
Configuración del pipeline.
Carga config/config.yaml y lo combina con los valores por defecto.
"""

import copy
import logging
import os
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv

load_dotenv()
logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "./config/config.yaml"

DEFAULT_CONFIG = {
    "providers": {
        "text": "openrouter",
        "image": "ark",
        "speech": "volcengine",
        "video": "ark",
    },
    "pipeline": {
        "max_concurrency": 4,
        "speed_ratio": 1.2,
        "subtitle_max_length": 12,
        "video_width": 720,
        "video_height": 1280,
        "video_fps": 30,
        # Por encima de esta duración el clip se hace con ffmpeg desde la imagen
        "max_provider_video_duration": 12,
        "fallback_audio_duration": 10.0,
        # Estilo de las imágenes de referencia (None = estilo por defecto)
        "image_style": None,
    },
    "paths": {
        "data_dir": "./data",
        "prompts": "./config/prompts.yaml",
        "content_filter": "./config/content_filter.yaml",
    },
}


def _merge(base: dict, override: dict) -> dict:
    result = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config(path: Optional[str] = None) -> dict:
    """
    Carga la configuración.

    Args:
        path: Ruta al YAML (por defecto config/config.yaml)

    Returns:
        Configuración completa con los valores por defecto aplicados
    """
    config_path = Path(path or DEFAULT_CONFIG_PATH)
    data = {}
    if config_path.exists():
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    else:
        logger.warning(f"Archivo de configuración no encontrado: {config_path}, usando valores por defecto")

    config = _merge(DEFAULT_CONFIG, data)
    data_dir = os.getenv("NOVEL_VIDEO_DATA_DIR")
    if data_dir:
        config["paths"]["data_dir"] = data_dir
    return config


def load_prompts(path: str) -> dict:
    """Carga los prompts desde YAML."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.warning(f"Archivo de prompts no encontrado: {path}")
        return {}
