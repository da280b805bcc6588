"""
Base para clientes de chat compatibles con el SDK de OpenAI.
"""

import logging
from typing import Optional

import httpx
import openai
from openai import AsyncOpenAI

from ..domain.contracts import TextGenerator
from ..utils.backoff import AuthenticationError, ProviderError, TransportError, with_retry

logger = logging.getLogger(__name__)


class ChatCompletionClient(TextGenerator):
    """Petición/respuesta contra un endpoint /chat/completions."""

    name = "llm"

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str,
        model: str,
        temperature: float = 0.7,
        max_tokens: int = 8000,
        system_prompt: str = "",
        extra_headers: Optional[dict] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.system_prompt = system_prompt
        self.extra_headers = extra_headers or {}

        if not self.api_key:
            logger.warning(f"[{self.name}] API key no configurada")
            self.client = None
        else:
            # Los reintentos los controla with_retry
            self.client = AsyncOpenAI(
                base_url=base_url, api_key=api_key, max_retries=0, http_client=http_client
            )

    def _messages(self, prompt: str) -> list[dict]:
        messages = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.append({"role": "user", "content": prompt})
        return messages

    @with_retry(max_attempts=3, min_wait=2.0, max_wait=60.0, exceptions=(TransportError,))
    async def _call_llm(self, prompt: str, model: str) -> str:
        """
        Llama al LLM con el prompt dado.

        Args:
            prompt: Mensaje del usuario
            model: Modelo a usar

        Returns:
            Contenido de la respuesta

        Raises:
            TransportError: Fallo de red (se reintenta)
            ProviderError: El proveedor devolvió error o una respuesta vacía
        """
        if not self.client:
            raise AuthenticationError(f"Cliente {self.name} no configurado", self.name)

        try:
            response = await self.client.chat.completions.create(
                model=model,
                messages=self._messages(prompt),
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                extra_headers=self.extra_headers or None,
            )
        except openai.AuthenticationError as e:
            raise AuthenticationError(str(e), self.name, 401) from e
        except openai.APIConnectionError as e:
            raise TransportError(str(e), self.name) from e
        except openai.APIStatusError as e:
            logger.error(f"Error llamando a {model}: {e}")
            raise ProviderError(str(e), self.name, e.status_code) from e

        if not response.choices or not response.choices[0].message.content:
            raise ProviderError(f"Respuesta vacía de {model}", self.name)
        if response.usage:
            logger.info(
                f"[{self.name}] {model}: {response.usage.prompt_tokens} tokens de entrada, "
                f"{response.usage.completion_tokens} de salida"
            )
        return response.choices[0].message.content

    async def generate(self, prompt: str) -> str:
        return await self._call_llm(prompt, self.model)

    async def aclose(self) -> None:
        if self.client:
            await self.client.close()
