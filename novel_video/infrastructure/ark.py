"""
Clientes de Volcengine Ark para imagen y video.
Las imágenes usan el endpoint compatible con OpenAI; los videos son trabajos asíncronos.
"""

import base64
import logging
import os
from typing import Optional

import httpx
import openai
from dotenv import load_dotenv
from openai import AsyncOpenAI

from ..domain.contracts import ImageGenerator, VideoGenerator
from ..utils.backoff import AuthenticationError, ProviderError, TransportError
from .jobs import AsyncJobClient, JobHandle, JobState, JobStatus

load_dotenv()
logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://ark.cn-beijing.volces.com/api/v3"


class ArkImageClient(ImageGenerator):
    """Texto a imagen con Seedream (respuesta síncrona en base64)."""

    name = "ark"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        size: str = "720x1280",
    ):
        """
        Inicializa el cliente de imágenes de Ark.

        Args:
            api_key: Clave de Ark (usa ARK_API_KEY por defecto)
            base_url: URL base de la API
            model: Modelo de imagen
            size: Tamaño de la imagen (vertical por defecto)
        """
        self.api_key = api_key or os.getenv("ARK_API_KEY")
        self.base_url = base_url or os.getenv("ARK_BASE_URL", DEFAULT_BASE_URL)
        self.model = model or os.getenv("ARK_IMAGE_MODEL", "doubao-seedream-3-0-t2i-250415")
        self.size = size

        if not self.api_key:
            logger.warning("ARK_API_KEY no configurada")
            self.client = None
        else:
            self.client = AsyncOpenAI(base_url=self.base_url, api_key=self.api_key)

    async def generate_image(self, prompt: str, filename_hint: str) -> bytes:
        if not self.client:
            raise AuthenticationError("Cliente Ark no configurado", self.name)

        try:
            response = await self.client.images.generate(
                model=self.model,
                prompt=prompt,
                size=self.size,
                response_format="b64_json",
                extra_body={"watermark": False},
            )
        except openai.AuthenticationError as e:
            raise AuthenticationError(str(e), self.name, 401) from e
        except openai.APIConnectionError as e:
            raise TransportError(str(e), self.name) from e
        except openai.APIStatusError as e:
            raise ProviderError(str(e), self.name, e.status_code) from e

        if not response.data or not response.data[0].b64_json:
            raise ProviderError("La respuesta no contiene imagen", self.name)
        logger.info(f"[ark] Imagen generada para {filename_hint}")
        return base64.b64decode(response.data[0].b64_json)

    async def aclose(self) -> None:
        if self.client:
            await self.client.close()


class ArkVideoClient(VideoGenerator):
    """Imagen a video con Seedance: tarea asíncrona consultada hasta terminar."""

    name = "ark"
    DEFAULT_PROMPT = "画面有明显的动态效果，镜头缓慢推进，人物有自然的动作和表情变化，背景有轻微的运动感，整体画面流畅自然"
    SUCCESS_STATES = ("succeeded", "completed")
    FAILURE_STATES = ("failed",)

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        poll_interval: float = 5.0,
        max_wait: float = 30 * 60.0,
        timeout: float = 60.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Inicializa el cliente de video de Ark.

        Args:
            api_key: Clave de Ark (usa ARK_API_KEY por defecto)
            base_url: URL base de la API
            model: Modelo de video
            poll_interval: Intervalo de consulta (segundos)
            max_wait: Espera máxima por tarea (segundos)
            timeout: Timeout de cada petición (segundos)
            http_client: Cliente HTTP a reutilizar (tests)
        """
        self.api_key = api_key or os.getenv("ARK_API_KEY")
        self.base_url = (base_url or os.getenv("ARK_BASE_URL", DEFAULT_BASE_URL)).rstrip("/")
        self.model = model or os.getenv("ARK_VIDEO_MODEL", "doubao-seedance-1-0-lite-i2v-250428")
        self.tasks_url = f"{self.base_url}/contents/generations/tasks"
        if not self.api_key:
            logger.warning("ARK_API_KEY no configurada")
        self.jobs = AsyncJobClient(
            provider=self.name,
            id_field="id",
            timeout=timeout,
            poll_interval=poll_interval,
            max_wait=max_wait,
            http_client=http_client,
        )

    @property
    def _auth_headers(self) -> dict:
        return {"Authorization": f"Bearer {self.api_key}"}

    async def _check(self, handle: JobHandle) -> JobStatus:
        data = await self.jobs.get_json(f"{self.tasks_url}/{handle.job_id}", headers=self._auth_headers)
        if not isinstance(data, dict):
            return JobStatus.running()
        status = str(data.get("status", "")).lower()
        if status in self.SUCCESS_STATES:
            video_url = (data.get("content") or {}).get("video_url")
            if not video_url:
                return JobStatus(JobState.FAILED, error="video_url vacío")
            return JobStatus(JobState.SUCCEEDED, output=video_url)
        if status in self.FAILURE_STATES:
            error = data.get("error") or {}
            message = error.get("message") if isinstance(error, dict) else str(error)
            return JobStatus(JobState.FAILED, error=message or "failed")
        logger.debug(f"[ark] Tarea {handle.job_id} en estado {status or 'desconocido'}")
        return JobStatus.running()

    async def generate_video_from_image(
        self, image_data_url: str, duration_seconds: int, prompt: str
    ) -> bytes:
        if not self.api_key:
            raise AuthenticationError("ARK_API_KEY no configurada", self.name)

        duration = max(1, min(self.MAX_DURATION, int(duration_seconds)))
        payload = {
            "model": self.model,
            "content": [
                {"type": "text", "text": prompt or self.DEFAULT_PROMPT},
                {"type": "image_url", "image_url": {"url": image_data_url}},
            ],
            "ratio": "9:16",
            "duration": duration,
            "watermark": False,
        }
        handle = await self.jobs.submit([self.tasks_url], payload, headers=self._auth_headers)
        video_url = await self.jobs.wait(handle, self._check)
        logger.info(f"[ark] Video listo para la tarea {handle.job_id}")
        return await self.jobs.download(video_url)

    async def aclose(self) -> None:
        await self.jobs.aclose()
