"""Módulo de infraestructura: proveedores basados en trabajos, ffmpeg y almacenamiento."""

from .ffmpeg import FFmpegClient, FFmpegError
from .jobs import AsyncJobClient, JobHandle, JobState, JobStatus
from .storage import LocalStorage

__all__ = [
    "AsyncJobClient",
    "FFmpegClient",
    "FFmpegError",
    "JobHandle",
    "JobState",
    "JobStatus",
    "LocalStorage",
]
