"""Módulo de utilidades"""

from .store import DocumentStore
from .backoff import with_retry, describe_error

__all__ = ["DocumentStore", "with_retry", "describe_error"]
