"""
Motor de voz de Volcengine (OpenSpeech).
Devuelve el audio en mp3 junto con los tiempos por palabra del análisis de frontend.
"""

import base64
import json
import logging
import os
import uuid
from typing import Any, Optional

import httpx
from dotenv import load_dotenv

from ..domain.contracts import SpeechResult, SpeechSynthesizer, WordTiming
from ..utils.backoff import AuthenticationError, ProviderError, TransportError, with_retry

load_dotenv()
logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://openspeech.bytedance.com/api/v1/tts"
SUCCESS_CODE = 3000


def repair_frontend_json(raw: str) -> str:
    """
    Inserta los separadores que faltan entre objetos o listas concatenados,
    un defecto habitual del campo `frontend`.
    """
    return raw.replace("}{", "},{").replace("][", "],[").replace('}"', '},"')


def parse_frontend(frontend: Any) -> list[WordTiming]:
    """
    Extrae los tiempos por palabra del campo `frontend`.

    Args:
        frontend: JSON en texto o ya decodificado, con `words[{word,start_time,end_time}]`

    Returns:
        Lista de WordTiming; vacía si el contenido no se puede interpretar
    """
    if not frontend:
        return []
    data = frontend
    if isinstance(frontend, str):
        try:
            data = json.loads(frontend)
        except json.JSONDecodeError:
            try:
                data = json.loads(repair_frontend_json(frontend))
                logger.warning("JSON de frontend reparado")
            except json.JSONDecodeError as e:
                logger.warning(f"JSON de frontend irrecuperable, se continúa sin tiempos: {e}")
                return []

    words = data.get("words") if isinstance(data, dict) else None
    if not isinstance(words, list):
        return []
    timings = []
    for item in words:
        if not isinstance(item, dict):
            continue
        try:
            timings.append(WordTiming(
                word=str(item.get("word", "")),
                start_time=float(item.get("start_time", 0.0)),
                end_time=float(item.get("end_time", 0.0)),
            ))
        except (TypeError, ValueError):
            continue
    return timings


class VolcengineTTSClient(SpeechSynthesizer):
    """Síntesis con la API HTTP de Volcengine."""

    name = "volcengine"

    def __init__(
        self,
        access_token: Optional[str] = None,
        app_id: Optional[str] = None,
        voice_type: Optional[str] = None,
        cluster: Optional[str] = None,
        sample_rate: Optional[int] = None,
        api_url: Optional[str] = None,
        timeout: float = 60.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Inicializa el motor de Volcengine.

        Args:
            access_token: Token de acceso (usa TTS_ACCESS_TOKEN por defecto)
            app_id: Id de la aplicación
            voice_type: Voz a usar
            cluster: Clúster de síntesis
            sample_rate: Frecuencia de muestreo del mp3
            api_url: Endpoint de síntesis
            timeout: Timeout de la petición (segundos)
            http_client: Cliente HTTP a reutilizar (tests)
        """
        self.access_token = access_token or os.getenv("TTS_ACCESS_TOKEN")
        self.app_id = app_id or os.getenv("TTS_APP_ID", "")
        self.voice_type = voice_type or os.getenv("TTS_VOICE_TYPE", "BV115_streaming")
        self.cluster = cluster or os.getenv("TTS_CLUSTER", "volcano_tts")
        self.sample_rate = sample_rate or int(os.getenv("TTS_SAMPLE_RATE", "44100"))
        self.api_url = api_url or os.getenv("TTS_API_URL", DEFAULT_API_URL)
        if not self.access_token:
            logger.warning("TTS_ACCESS_TOKEN no configurado")
        self.client = http_client or httpx.AsyncClient(timeout=timeout)

    def _build_payload(self, text: str, speed_ratio: float) -> dict:
        app = {"token": self.access_token, "cluster": self.cluster}
        if self.app_id:
            app["appid"] = self.app_id
        return {
            "app": app,
            "user": {"uid": "novel_video"},
            "audio": {
                "voice_type": self.voice_type,
                "encoding": "mp3",
                "rate": self.sample_rate,
                "speed_ratio": speed_ratio,
            },
            "request": {
                "reqid": str(uuid.uuid4()),
                "text": text,
                "text_type": "plain",
                "operation": "query",
                "with_frontend": 1,
                "frontend_type": "unitTson",
            },
        }

    @with_retry(max_attempts=3, min_wait=1.0, max_wait=10.0, exceptions=(TransportError,))
    async def _post(self, payload: dict) -> dict:
        try:
            response = await self.client.post(
                self.api_url,
                json=payload,
                headers={"Authorization": f"Bearer; {self.access_token}"},
            )
        except httpx.TransportError as e:
            raise TransportError(str(e), self.name) from e
        if response.status_code in (401, 403):
            raise AuthenticationError(f"Token rechazado ({response.status_code})", self.name, response.status_code)
        if response.is_error:
            raise ProviderError(
                f"HTTP {response.status_code}: {response.text[:300]}", self.name, response.status_code
            )
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError("La respuesta no es JSON", self.name) from e

    async def synthesize(self, text: str, speed_ratio: float = 1.0) -> SpeechResult:
        """
        Sintetiza un texto.

        Args:
            text: Texto limpio
            speed_ratio: Velocidad de lectura (1.0 = normal)

        Returns:
            SpeechResult con el mp3, su duración y los tiempos por palabra
        """
        if not self.access_token:
            raise AuthenticationError("TTS_ACCESS_TOKEN no configurado", self.name)

        data = await self._post(self._build_payload(text, speed_ratio))
        code = data.get("code")
        if code != SUCCESS_CODE:
            raise ProviderError(f"Código {code}: {data.get('message', '')}", self.name)
        if not data.get("data"):
            raise ProviderError("La respuesta no contiene audio", self.name)

        audio = base64.b64decode(data["data"])
        addition = data.get("addition") or {}
        try:
            duration = float(addition.get("duration", 0)) / 1000.0
        except (TypeError, ValueError):
            duration = 0.0
        words = parse_frontend(addition.get("frontend"))
        logger.info(f"[volcengine] Audio sintetizado: {duration:.2f}s, {len(words)} palabras")
        return SpeechResult(audio=audio, duration=duration, words=words)

    async def aclose(self) -> None:
        await self.client.aclose()
