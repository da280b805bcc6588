"""
Sistema de reintentos y taxonomía de errores para proveedores externos.
Implementa exponential backoff con tenacity y las excepciones que usa todo el pipeline.
"""

import logging
from typing import Optional

from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    before_sleep_log,
)

logger = logging.getLogger(__name__)


def with_retry(
    max_attempts: int = 3,
    min_wait: float = 1.0,
    max_wait: float = 60.0,
    exceptions: tuple = (Exception,),
):
    """
    Decorador para reintentar funciones con exponential backoff.
    Funciona tanto con funciones normales como con corrutinas.

    Args:
        max_attempts: Número máximo de intentos
        min_wait: Tiempo mínimo de espera entre intentos (segundos)
        max_wait: Tiempo máximo de espera entre intentos (segundos)
        exceptions: Tupla de excepciones a capturar

    Returns:
        Decorador configurado
    """
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(exceptions),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )


class APIError(Exception):
    """Error genérico de un proveedor externo."""

    def __init__(self, message: str, provider: str = ""):
        self.provider = provider
        super().__init__(f"[{provider}] {message}" if provider else message)


class TransportError(APIError):
    """Fallo de red o conexión tras agotar los reintentos."""
    pass


class ProviderError(APIError):
    """El proveedor respondió con un error (HTTP no-2xx o código en el sobre)."""

    def __init__(self, message: str, provider: str = "", status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message, provider)


class AuthenticationError(ProviderError):
    """Credenciales ausentes o rechazadas por el proveedor."""
    pass


class JobTimeoutError(APIError):
    """El trabajo asíncrono no llegó a un estado terminal dentro del tiempo máximo."""

    def __init__(self, message: str, provider: str = "", waited: float = 0.0):
        self.waited = waited
        super().__init__(message, provider)


class NarrationValidationError(ValueError):
    """La salida del LLM no tiene la estructura de narración esperada."""

    def __init__(self, message: str, errors: Optional[list[str]] = None):
        self.errors = errors or [message]
        super().__init__(message)


class MissingNarrationVideosError(RuntimeError):
    """Faltan videos de narración completados para ensamblar el video final."""
    pass


class RecordNotFoundError(LookupError):
    """El documento solicitado no existe o fue eliminado."""
    pass


def describe_error(error: BaseException) -> str:
    """
    Convierte una excepción en el mensaje que se guarda en `error_message`.
    Los timeouts llevan un prefijo propio para distinguirlos de fallos del proveedor.
    """
    message = str(error) or error.__class__.__name__
    if isinstance(error, JobTimeoutError):
        return f"timeout: {message}"
    return message
