"""
Procesamiento de texto: filtro de contenido, limpieza para TTS,
división en capítulos y alineación de subtítulos.
"""
from .alignment import SubtitleSplitter, build_char_timestamps, calculate_segment_timestamps
from .cleaner import clean_text_for_tts
from .content_filter import ContentFilter, FilterResult, WordLists
from .splitter import ChapterSegment, split_chapters
from .subtitles import AssSubtitleBuilder

__all__ = [
    "AssSubtitleBuilder",
    "ChapterSegment",
    "ContentFilter",
    "FilterResult",
    "SubtitleSplitter",
    "WordLists",
    "build_char_timestamps",
    "calculate_segment_timestamps",
    "clean_text_for_tts",
    "split_chapters",
]
