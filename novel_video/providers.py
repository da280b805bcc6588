"""
Selección de proveedores.
Cada capacidad tiene un registro nombre -> constructor; la configuración elige uno.
"""

import logging
from typing import Callable

from .domain.contracts import (
    ImageGenerator,
    ProviderSet,
    SpeechSynthesizer,
    TextGenerator,
    VideoGenerator,
)
from .infrastructure.ark import ArkImageClient, ArkVideoClient
from .infrastructure.comfyui import ComfyUIImageClient, ComfyUIVideoClient
from .llm import ArkTextClient, OpenRouterClient
from .tts import EdgeTTSClient, VolcengineTTSClient

logger = logging.getLogger(__name__)

TEXT_PROVIDERS: dict[str, Callable[[], TextGenerator]] = {
    "openrouter": OpenRouterClient,
    "ark": ArkTextClient,
}

IMAGE_PROVIDERS: dict[str, Callable[[], ImageGenerator]] = {
    "ark": ArkImageClient,
    "comfyui": ComfyUIImageClient,
}

SPEECH_PROVIDERS: dict[str, Callable[[], SpeechSynthesizer]] = {
    "volcengine": VolcengineTTSClient,
    "edge": EdgeTTSClient,
}

VIDEO_PROVIDERS: dict[str, Callable[[], VideoGenerator]] = {
    "ark": ArkVideoClient,
    "comfyui": ComfyUIVideoClient,
}

REGISTRY = {
    "text": TEXT_PROVIDERS,
    "image": IMAGE_PROVIDERS,
    "speech": SPEECH_PROVIDERS,
    "video": VIDEO_PROVIDERS,
}


def create_provider(capability: str, name: str):
    """
    Construye un proveedor por nombre.

    Raises:
        ValueError: Si la capacidad o el nombre no están registrados
    """
    registry = REGISTRY.get(capability)
    if registry is None:
        raise ValueError(f"Capacidad desconocida: {capability}")
    factory = registry.get(name)
    if factory is None:
        raise ValueError(
            f"Proveedor '{name}' no registrado para {capability}. Opciones: {', '.join(sorted(registry))}"
        )
    logger.info(f"Proveedor de {capability}: {name}")
    return factory()


def build_providers(config: dict) -> ProviderSet:
    """Crea los cuatro proveedores según la sección `providers` de la configuración."""
    selected = config.get("providers", {})
    return ProviderSet(
        text=create_provider("text", selected.get("text", "openrouter")),
        image=create_provider("image", selected.get("image", "ark")),
        speech=create_provider("speech", selected.get("speech", "volcengine")),
        video=create_provider("video", selected.get("video", "ark")),
    )
