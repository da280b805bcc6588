"""
Filtro de contenido para las narraciones.
Detecta términos prohibidos, sustituye términos sensibles por neutros
y elimina los términos graves antes de enviar el texto a los proveedores.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Optional

import yaml

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WordLists:
    """Listas de términos del filtro. Inmutable: se construye una vez y se inyecta."""
    forbidden: tuple[str, ...] = ()
    replacements: tuple[tuple[str, str], ...] = ()
    serious: tuple[str, ...] = ()
    substitutions: tuple[tuple[str, str], ...] = ()

    @classmethod
    def from_dict(cls, data: dict) -> "WordLists":
        return cls(
            forbidden=tuple(data.get("forbidden") or ()),
            replacements=tuple((data.get("replacements") or {}).items()),
            serious=tuple(data.get("serious") or ()),
            substitutions=tuple((data.get("substitutions") or {}).items()),
        )

    @classmethod
    def from_yaml(cls, path: str) -> "WordLists":
        """
        Carga las listas desde YAML. Si el archivo no existe usa las listas por defecto.

        Args:
            path: Ruta al archivo de listas
        """
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except FileNotFoundError:
            logger.warning(f"Listas de filtro no encontradas: {path}, usando las de por defecto")
            return DEFAULT_WORD_LISTS
        return cls.from_dict(data)


DEFAULT_WORD_LISTS = WordLists(
    forbidden=("毒品", "强暴"),
    replacements=(
        ("罪犯", "嫌疑人"),
        ("通缉犯", "TJ"),
        ("警察", "jc"),
        ("监狱", "牢狱"),
        ("遗体", "YT"),
        ("死", "S"),
        ("上吊", "SD"),
        ("自杀", "ZS"),
        ("跳楼", "TL"),
        ("尸体", "ST"),
        ("回房睡觉", "回房休息"),
        ("睡觉", "休息"),
    ),
    serious=(
        "双修", "采补", "吸精", "吸精气", "乱摸", "乱动", "赤裸裸", "服侍", "爆浆",
        "床上", "大宝贝", "勾引", "色情", "偷人", "鼎炉", "春药", "媚药", "软床",
        "丝袜", "催情", "允吸", "毒品", "上床", "强暴", "性欲",
    ),
    substitutions=(
        ("拥抱", "相伴"),
        ("温柔", "和善"),
        ("温热", "温暖"),
        ("目光", "视线"),
        ("欲望", "愿望"),
        ("互动", "交流"),
        ("诱惑", "吸引"),
        ("怀里", "身边"),
        ("大腿", "腿部"),
        ("抱起", "扶起"),
        ("姿势", "动作"),
    ),
)


@dataclass
class FilterResult:
    """Resultado de filtrar un texto."""
    text: str
    is_safe: bool
    issues: list[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.is_safe


class ContentFilter:
    """Aplica las listas de términos a un texto."""

    # Límite de pasadas hasta que el texto deja de cambiar
    MAX_PASSES = 10

    def __init__(self, word_lists: Optional[WordLists] = None):
        self.word_lists = word_lists or DEFAULT_WORD_LISTS
        # Los términos más largos primero, para que "回房睡觉" gane a "睡觉"
        self._replacements = self._longest_first(self.word_lists.replacements)
        self._substitutions = self._longest_first(self.word_lists.substitutions)
        self._serious = sorted(set(self.word_lists.serious), key=len, reverse=True)

    @staticmethod
    def _longest_first(pairs: tuple[tuple[str, str], ...]) -> list[tuple[str, str]]:
        return sorted(pairs, key=lambda pair: len(pair[0]), reverse=True)

    @classmethod
    def from_yaml(cls, path: str) -> "ContentFilter":
        return cls(WordLists.from_yaml(path))

    def check(self, text: str) -> list[str]:
        """Devuelve los problemas encontrados sin modificar el texto."""
        issues = []
        for word in self.word_lists.forbidden:
            if word in text:
                issues.append(f"Término prohibido: {word}")
        for word in self.word_lists.serious:
            if word in text:
                issues.append(f"Término grave: {word}")
        return issues

    def _apply_once(self, text: str) -> str:
        for original, replacement in self._replacements:
            text = text.replace(original, replacement)
        for original, substitute in self._substitutions:
            text = text.replace(original, substitute)
        for word in self._serious:
            text = text.replace(word, "")
        text = re.sub(r"\n{3,}", "\n\n", text)
        text = re.sub(r" {2,}", " ", text)
        return text

    def filter(self, text: str) -> str:
        """
        Filtra el texto hasta que deja de cambiar.
        Eliminar un término puede formar otro ("床床上上" -> "床上"), por eso se repite.
        """
        for _ in range(self.MAX_PASSES):
            filtered = self._apply_once(text)
            if filtered == text:
                return filtered
            text = filtered
        logger.warning("El filtro no se estabilizó tras el máximo de pasadas")
        return text

    def process(self, text: str) -> FilterResult:
        """
        Revisa y filtra un texto.

        Args:
            text: Texto original

        Returns:
            FilterResult con el texto filtrado y los problemas detectados
        """
        issues = self.check(text)
        for issue in issues:
            logger.warning(f"Filtro de contenido: {issue}")
        return FilterResult(text=self.filter(text), is_safe=not issues, issues=issues)
