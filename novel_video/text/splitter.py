"""
División de una novela en capítulos.
Concatenar los textos de los capítulos en orden reproduce el texto original exacto.
"""

import re
from dataclasses import dataclass

DEFAULT_TARGET_CHAPTERS = 50
TITLE_MAX_LENGTH = 30

CHAPTER_TITLE_PATTERNS = [
    re.compile(r"(?im)^第[一二三四五六七八九十百千万0-9]+章[^\n]*"),
    re.compile(r"(?im)^chapter\s*\d+[^\n]*"),
    re.compile(r"(?im)^章节\s*\d+[^\n]*"),
]

# Finales de frase donde se puede cortar al dividir por longitud
_BOUNDARY = re.compile(r"[\n。！？!?…]")


@dataclass
class ChapterSegment:
    """Un capítulo resultante de la división."""
    title: str
    text: str

    @property
    def total_chars(self) -> int:
        """Caracteres chinos más puntuación de ancho completo."""
        return len(re.findall(r"[一-鿿　-〿＀-￯]", self.text))

    @property
    def word_count(self) -> int:
        return len(re.findall(r"[一-鿿]", self.text))

    @property
    def line_count(self) -> int:
        return len([line for line in self.text.splitlines() if line.strip()])


def _title_for(text: str) -> str:
    for line in text.splitlines():
        if line.strip():
            return line.strip()[:TITLE_MAX_LENGTH]
    return ""


def _title_offsets(text: str) -> list[int]:
    """Posiciones de los títulos del primer patrón que aparece al menos dos veces."""
    for pattern in CHAPTER_TITLE_PATTERNS:
        offsets = sorted({m.start() for m in pattern.finditer(text)})
        if len(offsets) >= 2:
            return offsets
    return []


def _cut_at(text: str, offsets: list[int]) -> list[str]:
    bounds = [0] + [o for o in offsets if 0 < o < len(text)] + [len(text)]
    return [text[a:b] for a, b in zip(bounds, bounds[1:]) if b > a]


def _merge_adjacent(chunks: list[str], target: int) -> list[str]:
    """Une capítulos contiguos hasta quedar como máximo en `target`."""
    if len(chunks) <= target:
        return chunks
    target_len = sum(len(c) for c in chunks) / target
    merged: list[str] = []
    current = ""
    for i, chunk in enumerate(chunks):
        current += chunk
        remaining = len(chunks) - i - 1
        slots_left = target - len(merged) - 1
        # Cerrar el grupo al llegar a la longitud objetivo, o si cada capítulo
        # restante ya necesita su propio hueco
        if len(merged) < target - 1 and (len(current) >= target_len or remaining <= slots_left):
            merged.append(current)
            current = ""
    if current:
        merged.append(current)
    return merged


def _split_by_length(text: str, target: int) -> list[str]:
    """Divide en `target` trozos de longitud parecida, cortando en fin de línea o frase."""
    size = max(1, -(-len(text) // target))
    offsets = []
    position = 0
    while len(offsets) < target - 1:
        ideal = position + size
        if ideal >= len(text):
            break
        match = _BOUNDARY.search(text, ideal)
        cut = match.end() if match else ideal
        if cut >= len(text):
            break
        offsets.append(cut)
        position = cut
    return _cut_at(text, offsets)


def split_chapters(text: str, target: int = DEFAULT_TARGET_CHAPTERS) -> list[ChapterSegment]:
    """
    Divide el texto de una novela en capítulos.

    Primero busca títulos de capítulo (第X章, Chapter N, 章节 N). Si hay al menos dos,
    corta en cada título; el texto previo al primer título queda en el primer capítulo.
    Si salen más capítulos que `target`, se unen capítulos contiguos.
    Sin títulos, divide por longitud en `target` trozos.

    Args:
        text: Texto completo de la novela
        target: Número objetivo (máximo) de capítulos

    Returns:
        Lista de ChapterSegment; vacía si el texto está vacío
    """
    if not text:
        return []
    if target <= 0:
        target = DEFAULT_TARGET_CHAPTERS

    offsets = _title_offsets(text)
    if offsets:
        # El primer corte se ignora: el texto previo al primer título va con él
        chunks = _merge_adjacent(_cut_at(text, offsets[1:]), target)
    else:
        chunks = _split_by_length(text, target)

    return [ChapterSegment(title=_title_for(chunk), text=chunk) for chunk in chunks]
