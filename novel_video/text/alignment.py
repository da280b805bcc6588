"""
Alineación temporal de subtítulos.
Convierte los tiempos por palabra del motor de voz en tiempos por carácter,
divide la narración en líneas cortas y calcula cuándo aparece cada línea.
"""

import logging
import re
from dataclasses import dataclass
from typing import Iterable, Sequence

from ..domain.contracts import WordTiming
from ..domain.models import CharTime

logger = logging.getLogger(__name__)

SENTENCE_ENDINGS = "。！？；…："
SECONDARY_ENDINGS = "，、；"

# Caracteres tras los que es natural cortar una línea larga
BREAK_CHARS = "，、；：的了着过与和或但而却则"

# Segundos por carácter cuando una línea no se encuentra en la línea de tiempo
SECONDS_PER_CHAR = 0.3
OVERLAP_GAP = 0.1
MIN_SEGMENT_DURATION = 0.5

_PUNCTUATION = re.compile(
    r"[，。；：、！？“”‘’（）【】《》〈〉「」『』〔〕\[\]｛｝｜～·…—–,.;:!?\"'(){}|~`@#$%^&*+=<>/\\-]"
)


def clean_subtitle_text(text: str) -> str:
    """Quita espacios y puntuación; es el texto que cuenta para la longitud."""
    return _PUNCTUATION.sub("", re.sub(r"\s+", "", text))


def build_char_timestamps(words: Iterable[WordTiming]) -> list[CharTime]:
    """
    Reparte el intervalo de cada palabra en partes iguales entre sus caracteres.

    Args:
        words: Tiempos por palabra del motor de voz

    Returns:
        Tiempos por carácter en orden
    """
    chars = []
    for word in words:
        text = word.word or ""
        if not text:
            continue
        step = (word.end_time - word.start_time) / len(text)
        for i, char in enumerate(text):
            start = word.start_time + step * i
            chars.append(CharTime(character=char, start_time=start, end_time=start + step))
    return chars


class SubtitleSplitter:
    """Divide la narración en líneas de subtítulo de longitud acotada."""

    def __init__(self, max_length: int = 12):
        self.max_length = max_length if max_length > 0 else 12

    def split(self, text: str) -> list[str]:
        """
        Divide por frases y, si una frase supera `max_length` caracteres útiles,
        la corta en puntos naturales.

        Args:
            text: Narración de un plano

        Returns:
            Líneas de subtítulo
        """
        sentences = self._split_by(text, SENTENCE_ENDINGS)
        if len(sentences) == 1 and len(clean_subtitle_text(sentences[0])) > self.max_length * 2:
            sentences = self._split_by(sentences[0], SECONDARY_ENDINGS)

        segments = []
        for sentence in sentences:
            if len(clean_subtitle_text(sentence)) <= self.max_length:
                segments.append(sentence)
            else:
                segments.extend(self._split_long(sentence))
        return self._merge_single_chars(segments)

    @staticmethod
    def _split_by(text: str, endings: str) -> list[str]:
        sentences = []
        current = ""
        for char in text:
            current += char
            if char in endings:
                if current.strip():
                    sentences.append(current.strip())
                current = ""
        if current.strip():
            sentences.append(current.strip())
        return sentences

    def _split_long(self, sentence: str) -> list[str]:
        segments = []
        current = ""
        last_break = -1
        for char in sentence:
            # La puntuación no cuenta para la longitud, se pega a la línea actual
            if not clean_subtitle_text(char):
                current += char
                if char in BREAK_CHARS:
                    last_break = len(current)
                continue
            if len(clean_subtitle_text(current + char)) > self.max_length:
                # Cortar en el último punto natural de la segunda mitad, si lo hay
                if last_break >= 0 and len(clean_subtitle_text(current[:last_break])) >= self.max_length // 2:
                    segments.append(current[:last_break])
                    current = current[last_break:]
                else:
                    segments.append(current)
                    current = ""
                last_break = -1
            current += char
            if char in BREAK_CHARS:
                last_break = len(current)
        if current:
            segments.append(current)
        return [s for s in segments if s.strip()]

    @staticmethod
    def _merge_single_chars(segments: list[str]) -> list[str]:
        """Une las líneas de un solo carácter útil con la vecina."""
        segments = [s for s in segments if s.strip()]
        merged: list[str] = []
        carry = ""
        for seg in segments:
            seg = carry + seg
            carry = ""
            if len(clean_subtitle_text(seg)) == 1:
                if merged:
                    merged[-1] += seg
                else:
                    carry = seg
                continue
            merged.append(seg)
        if carry:
            merged.append(carry)
        return merged


@dataclass
class SegmentTiming:
    text: str
    start_time: float
    end_time: float


def calculate_segment_timestamps(
    segments: Sequence[str], char_timestamps: Sequence[CharTime]
) -> list[SegmentTiming]:
    """
    Asigna un intervalo a cada línea buscándola en la línea de tiempo sin puntuación.

    Las líneas que no se encuentran se estiman a 0.3 s por carácter. Los solapes
    se corrigen de modo que cada línea empieza después de la anterior y termina
    después de empezar.

    Args:
        segments: Líneas de subtítulo en orden
        char_timestamps: Tiempos por carácter del audio

    Returns:
        Una SegmentTiming por línea
    """
    # Línea de tiempo sin puntuación y su mapeo al índice original
    clean_chars: list[str] = []
    mapping: list[int] = []
    for i, item in enumerate(char_timestamps):
        if clean_subtitle_text(item.character):
            clean_chars.append(item.character)
            mapping.append(i)
    timeline = "".join(clean_chars)

    timings: list[SegmentTiming] = []
    cursor = 0
    for segment in segments:
        clean = clean_subtitle_text(segment)
        position = timeline.find(clean, cursor) if clean else -1
        if position >= 0:
            start = char_timestamps[mapping[position]].start_time
            end = char_timestamps[mapping[position + len(clean) - 1]].end_time
            cursor = position + len(clean)
        else:
            logger.warning(f"Línea de subtítulo no encontrada en el audio, se estima: {segment}")
            start = timings[-1].end_time + OVERLAP_GAP if timings else 0.0
            end = start + len(clean) * SECONDS_PER_CHAR

        if timings:
            prev_end = timings[-1].end_time
            if start < prev_end:
                start = prev_end + OVERLAP_GAP
                if start >= end:
                    end = start + len(clean) * SECONDS_PER_CHAR
            elif end <= start:
                end = start + len(clean) * SECONDS_PER_CHAR
        timings.append(SegmentTiming(text=segment, start_time=start, end_time=end))

    return _fix_overlaps(timings)


def _fix_overlaps(timings: list[SegmentTiming]) -> list[SegmentTiming]:
    for i, current in enumerate(timings):
        if i > 0:
            prev = timings[i - 1]
            if current.start_time < prev.end_time:
                duration = max(current.end_time - current.start_time, MIN_SEGMENT_DURATION)
                current.start_time = prev.end_time + OVERLAP_GAP
                current.end_time = current.start_time + duration
        if current.start_time >= current.end_time:
            current.end_time = current.start_time + 1.0
    return timings
