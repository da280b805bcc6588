"""
Cliente de trabajos asíncronos.
Envía un trabajo a un proveedor (con endpoint de respaldo), espera su resultado
consultando el estado y descarga el recurso producido.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Sequence

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from ..utils.backoff import JobTimeoutError, ProviderError, TransportError

logger = logging.getLogger(__name__)


class JobState(str, Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class JobHandle:
    """Referencia a un trabajo enviado."""
    job_id: str
    provider: str
    endpoint: str
    response: dict = field(default_factory=dict)


@dataclass
class JobStatus:
    """Estado de un trabajo según el proveedor."""
    state: JobState
    output: Any = None
    error: Optional[str] = None

    @classmethod
    def running(cls) -> "JobStatus":
        return cls(JobState.RUNNING)


class EndpointNotFoundError(ProviderError):
    """Todos los endpoints respondieron 404/405."""
    pass


StatusCheck = Callable[[JobHandle], Awaitable[JobStatus]]


class AsyncJobClient:
    """Envío, espera y descarga de trabajos sobre un httpx.AsyncClient compartido."""

    def __init__(
        self,
        provider: str,
        id_field: str = "id",
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        poll_interval: float = 1.0,
        max_wait: float = 300.0,
        headers: Optional[dict] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Inicializa el cliente.

        Args:
            provider: Nombre del proveedor (para logs y errores)
            id_field: Campo de la respuesta de envío que contiene el id del trabajo
            timeout: Timeout de cada petición HTTP (segundos)
            max_retries: Intentos de envío; en cada intento se prueban todos los endpoints
            retry_delay: Espera fija entre intentos (segundos)
            poll_interval: Intervalo entre consultas de estado (segundos)
            max_wait: Tiempo máximo de espera del trabajo (segundos)
            headers: Cabeceras comunes (p. ej. Authorization)
            http_client: Cliente HTTP a reutilizar
        """
        self.provider = provider
        self.id_field = id_field
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.poll_interval = poll_interval
        self.max_wait = max_wait
        self.client = http_client or httpx.AsyncClient(headers=headers or {}, timeout=timeout)
        if http_client is not None and headers:
            self.client.headers.update(headers)

    # ------------------------------------------------------------------
    # Envío
    # ------------------------------------------------------------------

    async def _post_once(
        self, urls: Sequence[str], payload: dict, params: Optional[dict], headers: Optional[dict]
    ) -> tuple[str, dict]:
        """Un intento: prueba cada endpoint en orden."""
        last_transport: Optional[Exception] = None
        for i, url in enumerate(urls):
            try:
                response = await self.client.post(url, json=payload, params=params, headers=headers)
            except httpx.TransportError as e:
                logger.warning(f"[{self.provider}] Error de red en {url}: {e}")
                last_transport = e
                continue

            if response.status_code in (404, 405):
                if i + 1 < len(urls):
                    logger.warning(
                        f"[{self.provider}] {url} respondió {response.status_code}, probando endpoint de respaldo"
                    )
                continue
            if response.is_error:
                raise ProviderError(
                    f"Envío rechazado ({response.status_code}): {response.text[:300]}",
                    self.provider,
                    response.status_code,
                )
            try:
                data = response.json()
            except ValueError:
                data = {"raw": response.text}
            return url, data if isinstance(data, dict) else {"raw": data}

        if last_transport is not None:
            raise TransportError(f"No se pudo conectar: {last_transport}", self.provider) from last_transport
        raise EndpointNotFoundError("endpoint not found", self.provider, 404)

    async def submit(
        self,
        urls: Sequence[str],
        payload: dict,
        params: Optional[dict] = None,
        headers: Optional[dict] = None,
    ) -> JobHandle:
        """
        Envía un trabajo.

        Args:
            urls: Endpoints en orden de preferencia (principal, respaldo)
            payload: Descripción JSON del trabajo
            params: Parámetros de query
            headers: Cabeceras adicionales de la petición

        Returns:
            JobHandle con el id del trabajo

        Raises:
            TransportError: Si la red falló en el último intento
            ProviderError: Si el proveedor rechazó el trabajo o no devolvió id
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_fixed(self.retry_delay),
            retry=retry_if_exception_type((TransportError, EndpointNotFoundError)),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                endpoint, data = await self._post_once(urls, payload, params, headers)

        job_id = data.get(self.id_field)
        if not job_id:
            raise ProviderError(f"La respuesta no contiene '{self.id_field}': {data}", self.provider)
        logger.info(f"[{self.provider}] Trabajo enviado: {job_id}")
        return JobHandle(job_id=str(job_id), provider=self.provider, endpoint=endpoint, response=data)

    # ------------------------------------------------------------------
    # Espera
    # ------------------------------------------------------------------

    async def wait(self, handle: JobHandle, check: StatusCheck) -> Any:
        """
        Consulta el estado hasta que el trabajo termina.

        Args:
            handle: Trabajo enviado
            check: Corrutina del proveedor que devuelve el JobStatus

        Returns:
            La salida del trabajo terminado

        Raises:
            ProviderError: Si el proveedor informa que el trabajo falló
            JobTimeoutError: Si se supera `max_wait`
        """
        loop = asyncio.get_running_loop()
        started = loop.time()
        deadline = started + self.max_wait

        while True:
            try:
                status = await check(handle)
            except (httpx.TransportError, TransportError) as e:
                logger.warning(f"[{self.provider}] Error de red consultando {handle.job_id}: {e}")
                status = JobStatus.running()

            if status.state == JobState.SUCCEEDED:
                logger.info(f"[{self.provider}] Trabajo {handle.job_id} terminado")
                return status.output
            if status.state == JobState.FAILED:
                raise ProviderError(
                    f"El trabajo {handle.job_id} falló: {status.error or 'sin detalle'}", self.provider
                )

            now = loop.time()
            if now >= deadline:
                waited = now - started
                raise JobTimeoutError(
                    f"El trabajo {handle.job_id} no terminó en {self.max_wait:.0f}s", self.provider, waited
                )
            await asyncio.sleep(min(self.poll_interval, deadline - now))

    async def run(
        self,
        urls: Sequence[str],
        payload: dict,
        check: StatusCheck,
        params: Optional[dict] = None,
        headers: Optional[dict] = None,
    ) -> Any:
        """Envía y espera en una sola llamada."""
        handle = await self.submit(urls, payload, params, headers)
        return await self.wait(handle, check)

    # ------------------------------------------------------------------
    # HTTP auxiliar
    # ------------------------------------------------------------------

    async def get_json(self, url: str, params: Optional[dict] = None, headers: Optional[dict] = None) -> Any:
        """GET que devuelve JSON; un estado no-2xx es ProviderError."""
        response = await self.client.get(url, params=params, headers=headers)
        if response.is_error:
            raise ProviderError(
                f"Consulta fallida ({response.status_code}): {response.text[:300]}",
                self.provider,
                response.status_code,
            )
        try:
            return response.json()
        except ValueError:
            return {}

    async def download(self, url: str, params: Optional[dict] = None, headers: Optional[dict] = None) -> bytes:
        """
        Descarga el recurso producido por un trabajo.

        Args:
            url: URL del recurso
            params: Parámetros de query
            headers: Cabeceras adicionales (autenticación)

        Returns:
            Bytes del recurso
        """
        try:
            response = await self.client.get(url, params=params, headers=headers, follow_redirects=True)
        except httpx.TransportError as e:
            raise TransportError(f"Error descargando {url}: {e}", self.provider) from e
        if response.is_error:
            raise ProviderError(
                f"Descarga fallida ({response.status_code})", self.provider, response.status_code
            )
        if not response.content:
            raise ProviderError(f"Descarga de {url}: recurso vacío", self.provider)
        return response.content

    async def aclose(self) -> None:
        await self.client.aclose()
