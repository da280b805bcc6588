"""
Motor Edge-TTS para generación de voz.
Usa voces neurales de Microsoft Edge; los tiempos por palabra salen de los eventos WordBoundary.
"""

import io
import logging
import os
from typing import Optional

import edge_tts
from dotenv import load_dotenv
from edge_tts.exceptions import EdgeTTSException, NoAudioReceived
from pydub import AudioSegment
from pydub.exceptions import CouldntDecodeError

from ..domain.contracts import SpeechResult, SpeechSynthesizer, WordTiming
from ..utils.backoff import ProviderError, TransportError

load_dotenv()
logger = logging.getLogger(__name__)

# Voz por defecto: Yunxi (mandarín, masculino, narrativo)
DEFAULT_VOICE = "zh-CN-YunxiNeural"

# Los offsets de Edge vienen en unidades de 100 ns
TICKS_PER_SECOND = 10_000_000


def speed_to_rate(speed_ratio: float) -> str:
    """Convierte un factor de velocidad (1.2) al formato de Edge ("+20%")."""
    return f"{int(round((speed_ratio - 1.0) * 100)):+d}%"


class EdgeTTSClient(SpeechSynthesizer):
    """Síntesis con Edge-TTS."""

    name = "edge"

    def __init__(self, voice: Optional[str] = None, pitch: str = "+0Hz"):
        """
        Inicializa el motor Edge-TTS.

        Args:
            voice: Voz a usar (usa EDGE_TTS_VOICE por defecto)
            pitch: Ajuste de tono
        """
        self.voice = voice or os.getenv("EDGE_TTS_VOICE", DEFAULT_VOICE)
        self.pitch = pitch

    @staticmethod
    def _measure(audio: bytes) -> float:
        try:
            return len(AudioSegment.from_file(io.BytesIO(audio), format="mp3")) / 1000.0
        except (CouldntDecodeError, OSError) as e:
            logger.warning(f"No se pudo medir la duración del audio: {e}")
            return 0.0

    async def synthesize(self, text: str, speed_ratio: float = 1.0) -> SpeechResult:
        communicate = edge_tts.Communicate(
            text=text,
            voice=self.voice,
            rate=speed_to_rate(speed_ratio),
            pitch=self.pitch,
            boundary="WordBoundary",
        )

        audio = bytearray()
        words: list[WordTiming] = []
        try:
            async for chunk in communicate.stream():
                if chunk["type"] == "audio":
                    audio.extend(chunk["data"])
                elif chunk["type"] == "WordBoundary":
                    start = chunk["offset"] / TICKS_PER_SECOND
                    words.append(WordTiming(
                        word=chunk["text"],
                        start_time=start,
                        end_time=start + chunk["duration"] / TICKS_PER_SECOND,
                    ))
        except NoAudioReceived as e:
            raise ProviderError(f"Sin audio para el texto: {e}", self.name) from e
        except EdgeTTSException as e:
            raise ProviderError(str(e), self.name) from e
        except OSError as e:
            raise TransportError(str(e), self.name) from e

        if not audio:
            raise ProviderError("Edge-TTS no devolvió audio", self.name)

        duration = self._measure(bytes(audio))
        if duration <= 0 and words:
            duration = words[-1].end_time
        logger.info(f"[edge] Audio sintetizado: {duration:.2f}s, {len(words)} palabras")
        return SpeechResult(audio=bytes(audio), duration=duration, words=words)
