"""
Cliente para un servidor ComfyUI.
Envía workflows, consulta /history hasta que aparece la salida y la descarga de /view.
"""

import base64
import copy
import json
import logging
import os
import uuid
from pathlib import Path
from typing import Any, Optional

import httpx
from dotenv import load_dotenv

from ..domain.contracts import ImageGenerator, VideoGenerator
from ..utils.backoff import ProviderError, TransportError
from .jobs import AsyncJobClient, JobHandle, JobState, JobStatus

load_dotenv()
logger = logging.getLogger(__name__)

DEFAULT_API_URL = "http://127.0.0.1:8188/api/prompt"
POSITIVE_FALLBACK_NODE = "12"


def normalize_prompt_url(url: str) -> str:
    """
    Normaliza el endpoint de envío.
    `host:port` y `host:port/api` terminan en `/api/prompt`; `/prompt` se respeta.
    """
    base = (url or "").strip().rstrip("/") or "http://127.0.0.1:8188"
    if "/api/prompt" in base:
        return base
    if base.endswith("/prompt"):
        return base
    if base.endswith("/api"):
        return base + "/prompt"
    if "/api" in base:
        return base.split("/api")[0].rstrip("/") + "/api/prompt"
    return base + "/api/prompt"


def _server_root(prompt_url: str) -> str:
    base = prompt_url.rstrip("/")
    for marker in ("/api/prompt", "/prompt", "/api"):
        if marker in base:
            return base.split(marker)[0].rstrip("/")
    return base


def api_root(prompt_url: str) -> str:
    """Prefijo `.../api` para history, view y upload."""
    return _server_root(prompt_url) + "/api"


def fallback_prompt_url(prompt_url: str) -> str:
    """Endpoint de respaldo: `/prompt` en la raíz del servidor."""
    return _server_root(prompt_url) + "/prompt"


def load_workflow(path: str) -> dict:
    """Carga la plantilla de workflow en formato API de ComfyUI."""
    workflow_path = Path(path)
    if not workflow_path.exists():
        raise FileNotFoundError(f"Workflow de ComfyUI no encontrado: {path}")
    with open(workflow_path, "r", encoding="utf-8") as f:
        return json.load(f)


def set_positive_prompt(workflow: dict, prompt: str) -> dict:
    """
    Devuelve una copia del workflow con el prompt positivo reemplazado.
    Busca un nodo CLIPTextEncode cuyo título contenga "Positive"; si no, usa el nodo "12".
    """
    wf = copy.deepcopy(workflow)
    target = None
    for node_id, node in wf.items():
        if not isinstance(node, dict) or node.get("class_type") != "CLIPTextEncode":
            continue
        title = (node.get("_meta") or {}).get("title", "")
        if "Positive" in title:
            target = node_id
            break
    if target is None and isinstance(wf.get(POSITIVE_FALLBACK_NODE), dict):
        target = POSITIVE_FALLBACK_NODE
    if target is None:
        logger.warning("No se encontró el nodo de prompt positivo en el workflow")
        return wf
    wf[target].setdefault("inputs", {})["text"] = prompt
    return wf


def set_load_image(workflow: dict, image_name: str) -> dict:
    """Devuelve una copia del workflow con la imagen de entrada en los nodos LoadImage."""
    wf = copy.deepcopy(workflow)
    found = False
    for node in wf.values():
        if isinstance(node, dict) and node.get("class_type") == "LoadImage":
            node.setdefault("inputs", {})["image"] = image_name
            found = True
    if not found:
        logger.warning("El workflow de video no tiene nodo LoadImage")
    return wf


def parse_history(data: Any, prompt_id: str, output_keys: tuple[str, ...] = ("images",)) -> Optional[dict]:
    """
    Extrae el primer archivo de salida de una respuesta de /history.

    Args:
        data: JSON de la respuesta
        prompt_id: Id del trabajo
        output_keys: Claves de salida aceptadas dentro de cada nodo

    Returns:
        Dict {filename, subfolder, type} o None si aún no hay salida
    """
    if not isinstance(data, dict):
        return None
    entry = data.get(prompt_id)
    if not isinstance(entry, dict):
        history = data.get("history")
        if isinstance(history, dict):
            entry = history.get(prompt_id)
            if not isinstance(entry, dict):
                entry = next((v for v in history.values() if isinstance(v, dict)), None)
    if not isinstance(entry, dict):
        return None

    outputs = entry.get("outputs")
    if not isinstance(outputs, dict):
        return None
    for node in outputs.values():
        if not isinstance(node, dict):
            continue
        for key in output_keys:
            files = node.get(key)
            if not isinstance(files, list):
                continue
            for item in files:
                if isinstance(item, dict) and item.get("filename"):
                    return {
                        "filename": item["filename"],
                        "subfolder": item.get("subfolder") or "",
                        "type": item.get("type") or "output",
                    }
    return None


def decode_data_url(data_url: str) -> tuple[bytes, str]:
    """Decodifica un data URL base64. Devuelve (bytes, extensión)."""
    header, _, payload = data_url.partition(",")
    if not payload or ";base64" not in header:
        raise ValueError("La imagen debe ser un data URL en base64")
    mime = header[5:].split(";")[0] if header.startswith("data:") else "image/png"
    extension = mime.split("/")[-1] or "png"
    return base64.b64decode(payload), extension


class ComfyUIClient:
    """Operaciones comunes contra ComfyUI."""

    provider = "comfyui"

    def __init__(
        self,
        api_url: Optional[str] = None,
        workflow_path: Optional[str] = None,
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        poll_interval: float = 1.0,
        max_wait: float = 300.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Inicializa el cliente de ComfyUI.

        Args:
            api_url: Endpoint de envío (usa COMFYUI_API_URL por defecto)
            workflow_path: Plantilla de workflow (usa COMFYUI_WORKFLOW_JSON por defecto)
            timeout: Timeout de cada petición (segundos)
            max_retries: Intentos de envío
            retry_delay: Espera entre intentos (segundos)
            poll_interval: Intervalo de consulta de /history (segundos)
            max_wait: Espera máxima por trabajo (segundos)
            http_client: Cliente HTTP a reutilizar (tests)
        """
        self.prompt_url = normalize_prompt_url(api_url or os.getenv("COMFYUI_API_URL", DEFAULT_API_URL))
        self.api_root = api_root(self.prompt_url)
        self.fallback_url = fallback_prompt_url(self.prompt_url)
        self.workflow_path = workflow_path or os.getenv(
            "COMFYUI_WORKFLOW_JSON", "./config/comfyui_workflow.json"
        )
        self._workflow: Optional[dict] = None
        self.jobs = AsyncJobClient(
            provider=self.provider,
            id_field="prompt_id",
            timeout=timeout,
            max_retries=max_retries,
            retry_delay=retry_delay,
            poll_interval=poll_interval,
            max_wait=max_wait,
            http_client=http_client,
        )

    @property
    def workflow(self) -> dict:
        if self._workflow is None:
            self._workflow = load_workflow(self.workflow_path)
        return self._workflow

    async def submit_workflow(self, workflow: dict, filename_hint: str) -> JobHandle:
        payload = {"prompt": workflow, "client_id": str(uuid.uuid4())}
        return await self.jobs.submit(
            [self.prompt_url, self.fallback_url], payload, params={"image": filename_hint}
        )

    async def wait_for_output(
        self, handle: JobHandle, filename_hint: str, output_keys: tuple[str, ...] = ("images",)
    ) -> dict:
        """Espera a que /history muestre un archivo de salida."""
        url = f"{self.api_root}/history/{handle.job_id}"

        async def check(job: JobHandle) -> JobStatus:
            try:
                data = await self.jobs.get_json(url, params={"image": filename_hint})
            except ProviderError as e:
                # Solo max_wait termina la espera
                logger.warning(f"[comfyui] Consulta de {job.job_id} fallida, se reintenta: {e}")
                return JobStatus.running()
            output = parse_history(data, job.job_id, output_keys)
            if output is None:
                return JobStatus.running()
            return JobStatus(JobState.SUCCEEDED, output=output)

        return await self.jobs.wait(handle, check)

    async def download_output(self, output: dict, filename_hint: str) -> bytes:
        params = {"filename": output["filename"], "type": output.get("type") or "output"}
        if output.get("subfolder"):
            params["subfolder"] = output["subfolder"]
        params["image"] = filename_hint
        return await self.jobs.download(f"{self.api_root}/view", params=params)

    async def upload_image(self, data: bytes, filename: str) -> str:
        """
        Sube una imagen de entrada al servidor.

        Returns:
            Nombre con el que ComfyUI guardó la imagen
        """
        try:
            response = await self.jobs.client.post(
                f"{self.api_root}/upload/image",
                files={"image": (filename, data, "application/octet-stream")},
                data={"overwrite": "true"},
            )
        except httpx.TransportError as e:
            raise TransportError(f"Error subiendo imagen: {e}", self.provider) from e
        if response.is_error:
            raise ProviderError(
                f"Subida de imagen rechazada ({response.status_code})", self.provider, response.status_code
            )
        body = response.json()
        name = body.get("name") or filename
        subfolder = body.get("subfolder")
        return f"{subfolder}/{name}" if subfolder else name

    async def aclose(self) -> None:
        await self.jobs.aclose()


class ComfyUIImageClient(ComfyUIClient, ImageGenerator):
    """Generación de imágenes con un workflow de texto a imagen."""

    name = "comfyui"

    async def generate_image(self, prompt: str, filename_hint: str) -> bytes:
        workflow = set_positive_prompt(self.workflow, prompt)
        handle = await self.submit_workflow(workflow, filename_hint)
        output = await self.wait_for_output(handle, filename_hint)
        logger.info(f"[comfyui] Imagen lista: {output['filename']}")
        return await self.download_output(output, filename_hint)


class ComfyUIVideoClient(ComfyUIClient, VideoGenerator):
    """Generación de video desde imagen con un workflow de imagen a video."""

    name = "comfyui"
    DEFAULT_PROMPT = "画面有明显的动态效果，镜头缓慢推进，人物有自然的动作和表情变化，背景有轻微的运动感，整体画面流畅自然"

    def __init__(self, *args, **kwargs):
        kwargs.setdefault("workflow_path", os.getenv(
            "COMFYUI_VIDEO_WORKFLOW_JSON", "./config/comfyui_video_workflow.json"
        ))
        kwargs.setdefault("max_wait", 600.0)
        super().__init__(*args, **kwargs)

    async def generate_video_from_image(
        self, image_data_url: str, duration_seconds: int, prompt: str
    ) -> bytes:
        duration = max(1, min(self.MAX_DURATION, int(duration_seconds)))
        image, extension = decode_data_url(image_data_url)
        filename_hint = f"{uuid.uuid4().hex}.{extension}"

        uploaded = await self.upload_image(image, filename_hint)
        workflow = set_load_image(set_positive_prompt(self.workflow, prompt or self.DEFAULT_PROMPT), uploaded)
        # Nodos con entrada de duración en segundos (plantillas propias)
        for node in workflow.values():
            if isinstance(node, dict) and "duration" in (node.get("inputs") or {}):
                node["inputs"]["duration"] = duration

        handle = await self.submit_workflow(workflow, filename_hint)
        output = await self.wait_for_output(handle, filename_hint, ("videos", "gifs", "images"))
        logger.info(f"[comfyui] Video listo: {output['filename']}")
        return await self.download_output(output, filename_hint)
