"""
Repositorio de novelas.
Acceso tipado sobre el DocumentStore: altas, consultas, versionado y borrado lógico.
"""
import logging
from typing import Any, Callable, Optional, Sequence, Type, TypeVar

from ..utils.backoff import RecordNotFoundError
from ..utils.store import DocumentStore
from .models import (
    ARTIFACT_MODELS,
    ArtifactKind,
    Chapter,
    Document,
    Narration,
    Scene,
    Shot,
    Video,
    VideoStatus,
    utcnow,
)

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=Document)


class NovelRepository:
    """Operaciones de persistencia del pipeline."""

    def __init__(self, store: DocumentStore):
        self.store = store

    # ------------------------------------------------------------------
    # CRUD genérico
    # ------------------------------------------------------------------

    def create(self, doc: T) -> T:
        self.store.put(doc.COLLECTION, doc.to_doc())
        return doc

    def create_many(self, docs: Sequence[Document]) -> None:
        """Guarda documentos de varias colecciones en una sola transacción."""
        by_collection: dict[str, list[dict]] = {}
        for doc in docs:
            by_collection.setdefault(doc.COLLECTION, []).append(doc.to_doc())
        with self.store.transaction():
            for collection, items in by_collection.items():
                self.store.put_many(collection, items)

    def get(self, model: Type[T], doc_id: str, include_deleted: bool = False) -> Optional[T]:
        data = self.store.get(model.COLLECTION, doc_id)
        if data is None:
            return None
        if data.get("deleted_at") and not include_deleted:
            return None
        return model.from_doc(data)

    def require(self, model: Type[T], doc_id: str) -> T:
        """Como `get`, pero lanza RecordNotFoundError si no existe."""
        doc = self.get(model, doc_id)
        if doc is None:
            raise RecordNotFoundError(f"{model.__name__} no encontrado: {doc_id}")
        return doc

    def find(self, model: Type[T], include_deleted: bool = False, **filters: Any) -> list[T]:
        """
        Busca documentos por igualdad de campos.

        Args:
            model: Clase del documento (define la colección)
            include_deleted: Si incluir documentos con borrado lógico
            **filters: Pares campo=valor

        Returns:
            Documentos encontrados en orden de inserción
        """
        predicate = None if include_deleted else (lambda d: not d.get("deleted_at"))
        return [
            model.from_doc(d)
            for d in self.store.find(model.COLLECTION, predicate, **filters)
        ]

    def update(self, model: Type[T], doc_id: str, **changes: Any) -> T:
        """Aplica cambios parciales y actualiza `updated_at`."""
        changes = {
            key: value.value if hasattr(value, "value") else value
            for key, value in changes.items()
        }
        changes["updated_at"] = utcnow().isoformat()
        data = self.store.update(model.COLLECTION, doc_id, changes)
        if data is None:
            raise RecordNotFoundError(f"{model.__name__} no encontrado: {doc_id}")
        return model.from_doc(data)

    def soft_delete(self, model: Type[T], doc_id: str) -> None:
        now = utcnow().isoformat()
        if self.store.update(model.COLLECTION, doc_id, {"deleted_at": now, "updated_at": now}) is None:
            raise RecordNotFoundError(f"{model.__name__} no encontrado: {doc_id}")

    # ------------------------------------------------------------------
    # Versionado
    # ------------------------------------------------------------------

    def list_versions(self, chapter_id: str, kind: ArtifactKind) -> list[int]:
        """Versiones vivas (no borradas) de un tipo de artefacto, ordenadas."""
        model = ARTIFACT_MODELS[kind]
        versions = {doc.version for doc in self.find(model, chapter_id=chapter_id)}
        return sorted(versions)

    def next_version(self, chapter_id: str, kind: ArtifactKind) -> int:
        """
        Siguiente número de versión. Cuenta también las versiones borradas,
        así un número nunca se reutiliza. Llamar dentro de `store.transaction()`.
        """
        model = ARTIFACT_MODELS[kind]
        docs = self.store.find(model.COLLECTION, chapter_id=chapter_id)
        return max((d.get("version", 0) for d in docs), default=0) + 1

    def create_version(
        self,
        chapter_id: str,
        kind: ArtifactKind,
        build: Callable[[int], Sequence[Document]],
    ) -> tuple[int, list[Document]]:
        """
        Reserva la siguiente versión y guarda lo que construya `build`,
        todo dentro de la misma transacción.

        Args:
            chapter_id: Capítulo dueño de la versión
            kind: Tipo de artefacto
            build: Recibe el número de versión y devuelve los documentos a guardar

        Returns:
            Tupla (versión asignada, documentos guardados)
        """
        with self.store.transaction():
            version = self.next_version(chapter_id, kind)
            docs = list(build(version))
            self.create_many(docs)
            self._init_current_version(chapter_id, kind, version)
        return version, docs

    def _init_current_version(self, chapter_id: str, kind: ArtifactKind, version: int) -> None:
        # El puntero solo se fija automáticamente la primera vez
        chapter = self.store.get(Chapter.COLLECTION, chapter_id)
        if chapter is None:
            return
        current = dict(chapter.get("current_versions") or {})
        if kind.value in current:
            return
        current[kind.value] = version
        self.store.update(Chapter.COLLECTION, chapter_id, {"current_versions": current})

    def resolve_version(
        self, chapter_id: str, kind: ArtifactKind, version: Optional[int] = None
    ) -> Optional[int]:
        """
        Decide qué versión usar: la explícita, luego la actual del capítulo,
        luego la más reciente. None si no hay ninguna.
        """
        if version is not None:
            return version
        chapter = self.get(Chapter, chapter_id)
        if chapter is not None:
            current = chapter.current_versions.get(kind.value)
            if current is not None and current in self.list_versions(chapter_id, kind):
                return current
        versions = self.list_versions(chapter_id, kind)
        return versions[-1] if versions else None

    def set_current_version(self, chapter_id: str, kind: ArtifactKind, version: int) -> Chapter:
        """
        Cambia la versión actual de un tipo de artefacto. No borra nada.

        Raises:
            RecordNotFoundError: Si el capítulo o la versión no existen
        """
        chapter = self.require(Chapter, chapter_id)
        if version not in self.list_versions(chapter_id, kind):
            raise RecordNotFoundError(
                f"La versión {version} de {kind.value} no existe para el capítulo {chapter_id}"
            )
        current = dict(chapter.current_versions)
        current[kind.value] = version
        logger.info(f"Versión actual de {kind.value} en {chapter_id}: v{version}")
        return self.update(Chapter, chapter_id, current_versions=current)

    # ------------------------------------------------------------------
    # Consultas del pipeline
    # ------------------------------------------------------------------

    def get_narration(self, chapter_id: str, version: Optional[int] = None) -> Optional[Narration]:
        resolved = self.resolve_version(chapter_id, ArtifactKind.NARRATION, version)
        if resolved is None:
            return None
        found = self.find(Narration, chapter_id=chapter_id, version=resolved)
        return found[0] if found else None

    def get_scenes(self, narration_id: str) -> list[Scene]:
        return sorted(self.find(Scene, narration_id=narration_id), key=lambda s: s.sequence)

    def get_shots(self, narration_id: str) -> list[Shot]:
        return sorted(self.find(Shot, narration_id=narration_id), key=lambda s: s.index)

    def list_artifacts(self, chapter_id: str, kind: ArtifactKind, version: int) -> list[Document]:
        model = ARTIFACT_MODELS[kind]
        docs = self.find(model, chapter_id=chapter_id, version=version)
        return sorted(docs, key=lambda d: getattr(d, "sequence", 0))

    def find_by_name(self, model: Type[T], novel_id: str, name: str) -> Optional[T]:
        found = self.find(model, novel_id=novel_id, name=name)
        return found[0] if found else None

    def sync_entities(self, model: Type[T], novel_id: str, entries: Sequence[dict]) -> list[T]:
        """
        Crea o actualiza personajes u objetos de una novela por nombre.

        Los campos vacíos de una entrada no sobrescriben los ya guardados.

        Args:
            model: Character o Prop
            novel_id: Novela dueña
            entries: Diccionarios con `name` y campos opcionales

        Returns:
            Documentos resultantes en el orden de `entries`
        """
        synced: list[T] = []
        with self.store.transaction():
            for entry in entries:
                fields = {k: v for k, v in entry.items() if k != "name" and v}
                existing = self.find_by_name(model, novel_id, entry["name"])
                if existing is None:
                    synced.append(self.create(model(novel_id=novel_id, name=entry["name"], **fields)))
                elif fields:
                    synced.append(self.update(model, existing.id, **fields))
                else:
                    synced.append(existing)
        return synced

    def find_by_status(self, model: Type[T], status: str, **filters: Any) -> list[T]:
        return self.find(model, status=status, **filters)

    def claim_video(self, video_id: str) -> bool:
        """Pasa un video de pending a processing de forma atómica."""
        return self.store.compare_and_set(
            Video.COLLECTION,
            video_id,
            "status",
            VideoStatus.PENDING.value,
            VideoStatus.PROCESSING.value,
            extra={"updated_at": utcnow().isoformat()},
        )

    def delete_narration(self, narration_id: str) -> int:
        """
        Borrado lógico de una narración con sus escenas y planos.

        Returns:
            Número de documentos marcados como borrados
        """
        self.require(Narration, narration_id)
        count = 0
        with self.store.transaction():
            for shot in self.find(Shot, narration_id=narration_id):
                self.soft_delete(Shot, shot.id)
                count += 1
            for scene in self.find(Scene, narration_id=narration_id):
                self.soft_delete(Scene, scene.id)
                count += 1
            self.soft_delete(Narration, narration_id)
            count += 1
        logger.info(f"Narración {narration_id} eliminada ({count} documentos)")
        return count
