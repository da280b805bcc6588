"""
Limpieza de texto para TTS.
"""
import re

BRACKET_PAIRS = (("(", ")"), ("[", "]"), ("{", "}"), ("（", "）"), ("【", "】"))

_BRACKETED = [
    re.compile(f"{re.escape(left)}[^{re.escape(right)}]*{re.escape(right)}")
    for left, right in BRACKET_PAIRS
]
_STRAY_BRACKETS = re.compile(
    "[" + "".join(re.escape(c) for pair in BRACKET_PAIRS for c in pair) + "]"
)


def clean_text_for_tts(text: str) -> str:
    """
    Limpia el texto antes de sintetizarlo: quita acotaciones entre paréntesis
    o corchetes y el símbolo &, y compacta los espacios.

    Args:
        text: Texto de la narración

    Returns:
        Texto listo para el motor de voz
    """
    for pattern in _BRACKETED:
        text = pattern.sub("", text)
    # Paréntesis sin pareja
    text = _STRAY_BRACKETS.sub("", text)
    text = text.replace("&", "")
    text = re.sub(r"\s+", " ", text)
    return text.strip()
