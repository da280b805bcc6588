"""
Contratos de los proveedores de generación.
Cada capacidad (texto, imagen, voz, video) tiene una interfaz propia;
el pipeline solo conoce estas interfaces, nunca los backends concretos.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass(frozen=True)
class WordTiming:
    """Palabra con su intervalo en el audio (segundos)."""
    word: str
    start_time: float
    end_time: float


@dataclass
class SpeechResult:
    """Resultado de una síntesis de voz."""
    audio: bytes
    duration: float
    words: list[WordTiming] = field(default_factory=list)


class TextGenerator(ABC):
    """Generación de texto síncrona (petición/respuesta)."""

    name: str = "text"

    @abstractmethod
    async def generate(self, prompt: str) -> str:
        """Devuelve el texto generado para el prompt."""

    async def aclose(self) -> None:
        pass


class ImageGenerator(ABC):
    """Generación de imágenes a partir de un prompt."""

    name: str = "image"

    @abstractmethod
    async def generate_image(self, prompt: str, filename_hint: str) -> bytes:
        """Devuelve los bytes de la imagen generada."""

    async def aclose(self) -> None:
        pass


class SpeechSynthesizer(ABC):
    """Síntesis de voz con marcas de tiempo por palabra."""

    name: str = "speech"

    @abstractmethod
    async def synthesize(self, text: str, speed_ratio: float = 1.0) -> SpeechResult:
        """Devuelve audio, duración en segundos y tiempos por palabra."""

    async def aclose(self) -> None:
        pass


class VideoGenerator(ABC):
    """Generación de video a partir de una imagen (siempre basada en trabajos)."""

    name: str = "video"
    MAX_DURATION = 12

    @abstractmethod
    async def generate_video_from_image(
        self, image_data_url: str, duration_seconds: int, prompt: str
    ) -> bytes:
        """Devuelve los bytes del video una vez que el trabajo termina."""

    async def aclose(self) -> None:
        pass


@dataclass
class ProviderSet:
    """Los cuatro proveedores elegidos por configuración."""
    text: TextGenerator
    image: ImageGenerator
    speech: SpeechSynthesizer
    video: VideoGenerator

    async def aclose(self) -> None:
        for provider in (self.text, self.image, self.speech, self.video):
            await provider.aclose()
