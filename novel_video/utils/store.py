"""
Almacén de documentos persistente en disco.
Guarda colecciones de documentos (dicts) sobre diskcache, con transacciones atómicas.
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator, Optional

from diskcache import Cache

logger = logging.getLogger(__name__)


class DocumentStore:
    """Colecciones de documentos indexadas por id sobre un Cache de diskcache."""

    def __init__(self, data_dir: str = "./data"):
        """
        Inicializa el almacén.

        Args:
            data_dir: Directorio donde se guarda la base de datos
        """
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.cache = Cache(str(self.data_dir / "store"))

    def _key(self, collection: str, doc_id: str) -> str:
        return f"{collection}:{doc_id}"

    def _index_key(self, collection: str) -> str:
        return f"index:{collection}"

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """
        Agrupa varias escrituras en una sola transacción de SQLite.
        Las transacciones se pueden anidar dentro del mismo hilo.
        """
        with self.cache.transact():
            yield

    def put(self, collection: str, doc: dict) -> None:
        """
        Inserta o reemplaza un documento.

        Args:
            collection: Nombre de la colección
            doc: Documento con campo "id"
        """
        self.put_many(collection, [doc])

    def put_many(self, collection: str, docs: list[dict]) -> None:
        """Inserta o reemplaza varios documentos en una transacción."""
        if not docs:
            return
        with self.cache.transact():
            index = self.cache.get(self._index_key(collection), [])
            known = set(index)
            for doc in docs:
                doc_id = doc["id"]
                self.cache.set(self._key(collection, doc_id), doc)
                if doc_id not in known:
                    index.append(doc_id)
                    known.add(doc_id)
            self.cache.set(self._index_key(collection), index)

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        """Obtiene un documento por id o None si no existe."""
        return self.cache.get(self._key(collection, doc_id))

    def all(self, collection: str) -> list[dict]:
        """Devuelve todos los documentos de la colección en orden de inserción."""
        docs = []
        for doc_id in self.cache.get(self._index_key(collection), []):
            doc = self.cache.get(self._key(collection, doc_id))
            if doc is not None:
                docs.append(doc)
        return docs

    def find(
        self,
        collection: str,
        predicate: Optional[Callable[[dict], bool]] = None,
        **filters: Any,
    ) -> list[dict]:
        """
        Busca documentos por igualdad de campos y/o un predicado.

        Args:
            collection: Nombre de la colección
            predicate: Función opcional que decide si el documento entra
            **filters: Pares campo=valor que deben coincidir

        Returns:
            Lista de documentos que cumplen todas las condiciones
        """
        results = []
        for doc in self.all(collection):
            if any(doc.get(field) != value for field, value in filters.items()):
                continue
            if predicate is not None and not predicate(doc):
                continue
            results.append(doc)
        return results

    def update(self, collection: str, doc_id: str, changes: dict) -> Optional[dict]:
        """
        Aplica cambios parciales a un documento existente.

        Returns:
            Documento actualizado o None si no existe
        """
        with self.cache.transact():
            doc = self.get(collection, doc_id)
            if doc is None:
                return None
            doc.update(changes)
            self.cache.set(self._key(collection, doc_id), doc)
            return doc

    def compare_and_set(
        self,
        collection: str,
        doc_id: str,
        field: str,
        expected: Any,
        new: Any,
        extra: Optional[dict] = None,
    ) -> bool:
        """
        Cambia `field` de `expected` a `new` de forma atómica.

        Args:
            collection: Nombre de la colección
            doc_id: Id del documento
            field: Campo a comparar
            expected: Valor esperado actualmente
            new: Valor nuevo
            extra: Campos adicionales a escribir si el cambio se aplica

        Returns:
            True si el documento tenía el valor esperado y se actualizó
        """
        with self.cache.transact():
            doc = self.get(collection, doc_id)
            if doc is None or doc.get(field) != expected:
                return False
            doc[field] = new
            if extra:
                doc.update(extra)
            self.cache.set(self._key(collection, doc_id), doc)
            return True

    def count(self, collection: str) -> int:
        return len(self.cache.get(self._index_key(collection), []))

    def close(self) -> None:
        """Cierra la conexión al almacén."""
        self.cache.close()
