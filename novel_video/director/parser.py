"""
Narration Parser
Valida la salida del LLM y la convierte en un NarrationScript.
"""
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Union

from pydantic import ValidationError

from ..domain.models import NarrationScript
from ..utils.backoff import NarrationValidationError

logger = logging.getLogger(__name__)

MIN_SCENES = 7
MIN_NARRATION_CHARS = 1100
MAX_NARRATION_CHARS = 1300


@dataclass
class ValidationResult:
    """Resultado de la validación."""
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def __bool__(self):
        return self.is_valid


def count_chinese_chars(text: str) -> int:
    return len(re.findall(r"[一-鿿]", text))


class NarrationParser:
    """Validador y parseador de guiones de narración."""

    def _extract_json(self, text: str) -> Dict[str, Any]:
        # Limpiar bloques de código markdown si existen
        clean = text.replace("```json", "").replace("```", "").strip()
        try:
            return json.loads(clean)
        except json.JSONDecodeError:
            pass
        # Texto alrededor del JSON: quedarse con el primer objeto completo
        start, end = clean.find("{"), clean.rfind("}")
        if start == -1 or end <= start:
            raise NarrationValidationError("El LLM no devolvió un JSON válido")
        try:
            return json.loads(clean[start:end + 1])
        except json.JSONDecodeError as e:
            logger.error(f"Error decodificando JSON del LLM: {e}")
            raise NarrationValidationError("El LLM no devolvió un JSON válido") from e

    def parse(self, raw_input: Union[str, Dict[str, Any]]) -> NarrationScript:
        """
        Convierte un JSON (string o dict) en un NarrationScript validado.

        Raises:
            NarrationValidationError: Si faltan las escenas o no hay texto de narración
        """
        data = self._extract_json(raw_input) if isinstance(raw_input, str) else raw_input
        if not isinstance(data, dict):
            raise NarrationValidationError("La narración debe ser un objeto JSON")

        if not data.get("scenes"):
            raise NarrationValidationError("缺少 scenes 字段或 scenes 为空")

        try:
            script = NarrationScript.model_validate(data)
        except ValidationError as e:
            errors = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
            logger.error(f"Estructura de narración inválida: {errors}")
            raise NarrationValidationError("Estructura de narración inválida", errors) from e

        if script.shot_count == 0:
            raise NarrationValidationError("La narración no contiene planos")
        if not script.narration_text.strip():
            raise NarrationValidationError("Ningún plano tiene texto de narración")

        for warning in self.validate_quality(script).warnings:
            logger.warning(warning)
        return script

    def validate_quality(self, script: NarrationScript) -> ValidationResult:
        """Reglas de calidad que no bloquean el guardado."""
        warnings = []
        if len(script.scenes) < MIN_SCENES:
            warnings.append(f"Pocas escenas: {len(script.scenes)} (mínimo recomendado {MIN_SCENES})")

        length = count_chinese_chars(script.narration_text)
        if not MIN_NARRATION_CHARS <= length <= MAX_NARRATION_CHARS:
            warnings.append(
                f"Longitud de narración fuera de rango: {length} caracteres "
                f"(esperado {MIN_NARRATION_CHARS}-{MAX_NARRATION_CHARS})"
            )

        # Verificar que los números de escena sean secuenciales
        for expected, scene in enumerate(script.scenes, start=1):
            if scene.scene_number and scene.scene_number != str(expected):
                warnings.append(
                    f"Números de escena desordenados. Esperado {expected}, encontrado {scene.scene_number}"
                )
                break

        return ValidationResult(is_valid=True, warnings=warnings)
