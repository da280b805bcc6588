"""
Cliente de texto para Volcengine Ark (endpoint compatible con OpenAI).
"""

import os
from typing import Optional

from dotenv import load_dotenv

from .client import ChatCompletionClient

load_dotenv()

DEFAULT_BASE_URL = "https://ark.cn-beijing.volces.com/api/v3"


class ArkTextClient(ChatCompletionClient):
    """Generación de texto con los modelos Doubao de Ark."""

    name = "ark"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(
            api_key=api_key or os.getenv("ARK_API_KEY"),
            base_url=base_url or os.getenv("ARK_BASE_URL", DEFAULT_BASE_URL),
            model=model or os.getenv("ARK_MODEL", "doubao-seed-1-6-flash-250615"),
            **kwargs,
        )
