"""
Personajes y objetos del guion.
Normaliza las listas `characters` y `props` que devuelve el LLM y construye
los prompts de sus imágenes de referencia.
"""
from typing import Any, Optional

# Campos que se copian de una entrada del guion al documento de la novela
CHARACTER_FIELDS = ("gender", "age_group", "role_number", "description", "image_prompt")
PROP_FIELDS = ("category", "description", "image_prompt")

DEFAULT_STYLE = (
    "画面风格是强调强烈线条、鲜明对比和现代感造型，色彩饱和，"
    "带有动态夸张与都市叙事视觉冲击力的国风漫画风格"
)


def extract_entities(items: list[Any], fields: tuple[str, ...]) -> list[dict]:
    """
    Convierte las entradas del guion en diccionarios con `name` y los campos indicados.

    Una entrada puede ser un texto (solo el nombre) o un objeto. Las entradas sin
    nombre se descartan y un nombre repetido se fusiona con el anterior.

    Args:
        items: Lista `characters` o `props` de la narración
        fields: Campos opcionales a conservar

    Returns:
        Lista de diccionarios en el orden del guion
    """
    entities: dict[str, dict] = {}
    for item in items or []:
        if isinstance(item, str):
            item = {"name": item}
        if not isinstance(item, dict):
            continue
        name = str(item.get("name") or "").strip()
        if not name:
            continue
        entity = entities.setdefault(name, {"name": name})
        for key in fields:
            value = item.get(key)
            if value is not None and str(value).strip():
                entity[key] = str(value).strip()
    return list(entities.values())


class ImagePromptBuilder:
    """Prompts de imagen: estilo, sujeto y escena separados por `。`."""

    def __init__(self, style: Optional[str] = None):
        self.style = style or DEFAULT_STYLE

    @staticmethod
    def describe_character(character) -> str:
        parts = []
        if character.gender:
            parts.append("一位女性" if character.gender == "女" else "一位男性")
        if character.age_group:
            parts.append(character.age_group)
        if character.description:
            parts.append(character.description)
        return "，".join(parts)

    def build(self, subject: str, scene_prompt: str = "") -> str:
        return "。".join(part for part in (self.style, subject, scene_prompt) if part)

    def character_prompt(self, character) -> str:
        """El prompt propio del personaje o, si no tiene, uno a partir de su descripción."""
        if character.image_prompt:
            return character.image_prompt
        description = self.describe_character(character)
        if not description:
            return ""
        return self.build(f"{character.name}，{description}", "全身立绘，纯色背景")

    def prop_prompt(self, prop) -> str:
        if prop.image_prompt:
            return prop.image_prompt
        if not prop.description:
            return ""
        return self.build(f"{prop.name}，{prop.description}", "物品特写，纯色背景")
