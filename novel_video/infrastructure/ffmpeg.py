"""
Operaciones de video con ffmpeg.
Cada operación lanza ffmpeg como subproceso asíncrono; si la tarea se cancela
el proceso se termina.
"""

import asyncio
import logging
import tempfile
from pathlib import Path
from typing import Sequence

logger = logging.getLogger(__name__)


class FFmpegError(RuntimeError):
    """ffmpeg terminó con código distinto de cero."""
    pass


class FFmpegClient:
    """Envoltorio de ffmpeg/ffprobe para el montaje de los videos."""

    def __init__(
        self,
        binary: str = "ffmpeg",
        probe_binary: str = "ffprobe",
        width: int = 720,
        height: int = 1280,
        fps: int = 30,
    ):
        """
        Args:
            binary: Ejecutable de ffmpeg
            probe_binary: Ejecutable de ffprobe
            width: Ancho de salida estándar
            height: Alto de salida estándar
            fps: Fotogramas por segundo de salida
        """
        self.binary = binary
        self.probe_binary = probe_binary
        self.width = width
        self.height = height
        self.fps = fps

    async def _run(self, args: Sequence[str], binary: str = "") -> bytes:
        cmd = [binary or self.binary, *[str(a) for a in args]]
        logger.debug(f"Ejecutando: {' '.join(cmd)}")
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await process.communicate()
        except asyncio.CancelledError:
            process.kill()
            await process.wait()
            raise
        if process.returncode != 0:
            tail = stderr.decode("utf-8", errors="replace")[-500:]
            raise FFmpegError(f"{cmd[0]} falló ({process.returncode}): {tail}")
        return stdout

    async def probe_duration(self, path: Path) -> float:
        """Duración en segundos de un archivo multimedia."""
        out = await self._run(
            ["-v", "error", "-show_entries", "format=duration", "-of", "csv=p=0", path],
            binary=self.probe_binary,
        )
        try:
            return float(out.decode().strip())
        except ValueError:
            return 0.0

    def _scale_filter(self) -> str:
        return (
            f"scale={self.width}:{self.height}:force_original_aspect_ratio=decrease,"
            f"pad={self.width}:{self.height}:(ow-iw)/2:(oh-ih)/2,setsar=1,fps={self.fps}"
        )

    async def standardize(self, source: Path, output: Path) -> Path:
        """Convierte a H.264/AAC con la resolución y fps estándar."""
        await self._run([
            "-y", "-i", source,
            "-vf", self._scale_filter(),
            "-c:v", "libx264", "-preset", "fast", "-pix_fmt", "yuv420p",
            "-c:a", "aac", "-ar", "44100", "-ac", "2",
            output,
        ])
        return output

    async def concat(self, sources: Sequence[Path], output: Path) -> Path:
        """
        Une videos con el demuxer concat.

        Args:
            sources: Videos en orden
            output: Archivo de salida

        Returns:
            Ruta del video unido
        """
        if not sources:
            raise ValueError("No hay videos que unir")
        with tempfile.NamedTemporaryFile("w", suffix=".txt", delete=False, encoding="utf-8") as f:
            for source in sources:
                escaped = str(Path(source).resolve()).replace("'", "'\\''")
                f.write(f"file '{escaped}'\n")
            list_path = Path(f.name)
        try:
            # Se re-codifica: el cierre opcional puede venir con otro códec
            await self._run([
                "-y", "-f", "concat", "-safe", "0", "-i", list_path,
                "-vf", self._scale_filter(),
                "-c:v", "libx264", "-preset", "fast", "-pix_fmt", "yuv420p",
                "-c:a", "aac", "-ar", "44100", "-ac", "2",
                output,
            ])
        finally:
            list_path.unlink(missing_ok=True)
        return output

    async def add_subtitles(self, source: Path, subtitles: Path, output: Path) -> Path:
        """Quema un archivo ASS sobre el video."""
        escaped = str(Path(subtitles).resolve()).replace("\\", "/").replace(":", "\\:").replace("'", "\\'")
        await self._run([
            "-y", "-i", source,
            "-vf", f"subtitles='{escaped}'",
            "-c:v", "libx264", "-preset", "fast", "-pix_fmt", "yuv420p",
            "-c:a", "copy",
            output,
        ])
        return output

    async def replace_audio(self, source: Path, audio: Path, output: Path, duration: float) -> Path:
        """
        Sustituye el audio del video. Si el video es más corto que el audio
        se congela el último fotograma.
        """
        await self._run([
            "-y", "-i", source, "-i", audio,
            "-filter_complex", f"[0:v]tpad=stop_mode=clone:stop_duration={duration:.3f}[v]",
            "-map", "[v]", "-map", "1:a",
            "-t", f"{duration:.3f}",
            "-c:v", "libx264", "-preset", "fast", "-pix_fmt", "yuv420p",
            "-c:a", "aac",
            output,
        ])
        return output

    async def create_image_video(self, image: Path, output: Path, duration: float) -> Path:
        """
        Crea un clip desde una imagen fija con efecto Ken Burns (zoom lento).

        Args:
            image: Imagen de entrada
            output: Video de salida
            duration: Duración en segundos
        """
        frames = max(1, int(round(duration * self.fps)))
        zoom = (
            f"scale={self.width * 2}:{self.height * 2},"
            f"zoompan=z='min(zoom+0.0008,1.2)':d={frames}"
            f":x='iw/2-(iw/zoom/2)':y='ih/2-(ih/zoom/2)'"
            f":s={self.width}x{self.height}:fps={self.fps}"
        )
        await self._run([
            "-y", "-loop", "1", "-i", image,
            "-vf", zoom,
            "-t", f"{duration:.3f}",
            "-c:v", "libx264", "-preset", "fast", "-pix_fmt", "yuv420p",
            output,
        ])
        return output
