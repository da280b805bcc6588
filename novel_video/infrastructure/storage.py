"""
Almacenamiento local de recursos binarios (imágenes, audio, subtítulos, videos).
"""

import logging
import uuid
from pathlib import Path

logger = logging.getLogger(__name__)


class LocalStorage:
    """Guarda bytes bajo `data_dir/resources` con un id de recurso generado."""

    def __init__(self, data_dir: str = "./data"):
        self.root = Path(data_dir) / "resources"
        self.root.mkdir(parents=True, exist_ok=True)

    def save(self, data: bytes, extension: str, folder: str = "") -> str:
        """
        Guarda un recurso.

        Args:
            data: Contenido
            extension: Extensión sin punto (png, mp3, ass, mp4)
            folder: Subcarpeta lógica (p. ej. el id del capítulo)

        Returns:
            Id del recurso (ruta relativa a la raíz)
        """
        resource_id = f"{folder}/{uuid.uuid4().hex}.{extension}" if folder else f"{uuid.uuid4().hex}.{extension}"
        path = self.path(resource_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        logger.debug(f"Recurso guardado: {resource_id} ({len(data)} bytes)")
        return resource_id

    def save_file(self, source: Path, extension: str, folder: str = "") -> str:
        """Guarda una copia de un archivo existente."""
        return self.save(Path(source).read_bytes(), extension, folder)

    def path(self, resource_id: str) -> Path:
        path = (self.root / resource_id).resolve()
        if self.root.resolve() not in path.parents:
            raise ValueError(f"Id de recurso inválido: {resource_id}")
        return path

    def load(self, resource_id: str) -> bytes:
        return self.path(resource_id).read_bytes()

    def exists(self, resource_id: str) -> bool:
        return self.path(resource_id).exists()
