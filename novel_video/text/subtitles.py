"""
Generador de subtítulos en formato ASS.
Pensado para video vertical 720x1280 con texto chino.
"""

import logging
from typing import Optional, Sequence

from .alignment import SegmentTiming

logger = logging.getLogger(__name__)


class AssSubtitleBuilder:
    """Construye documentos ASS a partir de líneas con tiempos."""

    # Estilo legible en móvil: fuente grande, contorno grueso, centrado abajo
    DEFAULT_STYLE = {
        "name": "Default",
        "fontname": "Noto Sans CJK SC",
        "fontsize": 48,
        "primary_color": "&H00FFFFFF",  # Blanco
        "secondary_color": "&H00FFFFFF",
        "outline_color": "&H00000000",  # Negro
        "back_color": "&H80000000",
        "bold": -1,
        "italic": 0,
        "underline": 0,
        "strikeout": 0,
        "scale_x": 100,
        "scale_y": 100,
        "spacing": 1,
        "angle": 0,
        "border_style": 1,
        "outline": 3,
        "shadow": 2,
        "alignment": 2,
        "margin_l": 30,
        "margin_r": 30,
        "margin_v": 160,
        "encoding": 1,
    }

    def __init__(self, width: int = 720, height: int = 1280, style: Optional[dict] = None):
        """
        Args:
            width: Ancho del video
            height: Alto del video
            style: Estilo que reemplaza campos del estilo por defecto
        """
        self.width = width
        self.height = height
        self.style = {**self.DEFAULT_STYLE, **(style or {})}

    def _format_time(self, seconds: float) -> str:
        """
        Formatea segundos a formato ASS (H:MM:SS.cc).

        Args:
            seconds: Tiempo en segundos

        Returns:
            Tiempo formateado
        """
        total_cs = int(round(max(seconds, 0.0) * 100))
        hours, rest = divmod(total_cs, 360000)
        minutes, rest = divmod(rest, 6000)
        secs, centisecs = divmod(rest, 100)
        return f"{hours}:{minutes:02d}:{secs:02d}.{centisecs:02d}"

    def _style_to_line(self, style: dict) -> str:
        """Convierte un dict de estilo a línea ASS."""
        fields = [
            "name", "fontname", "fontsize", "primary_color", "secondary_color",
            "outline_color", "back_color", "bold", "italic", "underline", "strikeout",
            "scale_x", "scale_y", "spacing", "angle", "border_style", "outline",
            "shadow", "alignment", "margin_l", "margin_r", "margin_v", "encoding",
        ]
        return "Style: " + ",".join(str(style[f]) for f in fields)

    def _create_header(self, title: str) -> str:
        return f"""[Script Info]
Title: {title}
ScriptType: v4.00+
WrapStyle: 0
ScaledBorderAndShadow: yes
YCbCr Matrix: TV.709
PlayResX: {self.width}
PlayResY: {self.height}

[V4+ Styles]
Format: Name, Fontname, Fontsize, PrimaryColour, SecondaryColour, OutlineColour, BackColour, Bold, Italic, Underline, StrikeOut, ScaleX, ScaleY, Spacing, Angle, BorderStyle, Outline, Shadow, Alignment, MarginL, MarginR, MarginV, Encoding
{self._style_to_line(self.style)}

[Events]
Format: Layer, Start, End, Style, Name, MarginL, MarginR, MarginV, Effect, Text
"""

    def _format_text(self, text: str) -> str:
        # Los saltos de línea en ASS son \N; las llaves abren etiquetas de estilo
        return text.replace("\n", "\\N").replace("{", "(").replace("}", ")")

    def build(self, segments: Sequence[SegmentTiming], title: str = "Narration") -> str:
        """
        Genera el contenido ASS completo.

        Args:
            segments: Líneas con tiempo de inicio y fin
            title: Título del script

        Returns:
            Documento ASS como texto
        """
        content = self._create_header(title)
        for seg in segments:
            start = self._format_time(seg.start_time)
            end = self._format_time(seg.end_time)
            content += f"Dialogue: 0,{start},{end},{self.style['name']},,0,0,0,,{self._format_text(seg.text)}\n"
        logger.debug(f"ASS generado con {len(segments)} líneas")
        return content
