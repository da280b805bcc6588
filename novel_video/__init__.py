"""
novel_video - Convierte novelas en videos cortos narrados.
Capítulos → guion de narración → imágenes, voz, subtítulos y video por plano → video final.
"""

__version__ = "0.3.0"
