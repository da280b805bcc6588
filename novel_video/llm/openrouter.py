"""
Cliente para OpenRouter API.
Compatible con el SDK de OpenAI.
"""

import logging
import os
from typing import Optional

from dotenv import load_dotenv

from ..utils.backoff import AuthenticationError, ProviderError
from .client import ChatCompletionClient

load_dotenv()
logger = logging.getLogger(__name__)


class OpenRouterClient(ChatCompletionClient):
    """Generación de texto en OpenRouter con modelo de respaldo."""

    name = "openrouter"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model_primary: Optional[str] = None,
        model_backup: Optional[str] = None,
        **kwargs,
    ):
        """
        Inicializa el cliente de OpenRouter.

        Args:
            api_key: Clave (usa OPENROUTER_API_KEY por defecto)
            model_primary: Modelo principal
            model_backup: Modelo que se usa si el principal falla
        """
        self.model_backup = model_backup or os.getenv("LLM_MODEL_BACKUP", "meta-llama/llama-4-scout")
        super().__init__(
            api_key=api_key or os.getenv("OPENROUTER_API_KEY"),
            base_url="https://openrouter.ai/api/v1",
            model=model_primary or os.getenv("LLM_MODEL_PRIMARY", "qwen/qwen3-235b-a22b-2507"),
            extra_headers={
                "HTTP-Referer": "https://github.com/novel-video",
                "X-Title": "Novel Video",
            },
            **kwargs,
        )

    async def generate(self, prompt: str) -> str:
        try:
            return await self._call_llm(prompt, self.model)
        except AuthenticationError:
            raise
        except ProviderError as e:
            if not self.model_backup or self.model_backup == self.model:
                raise
            logger.warning(f"Intentando con modelo backup {self.model_backup}: {e}")
            return await self._call_llm(prompt, self.model_backup)
