"""
Pipeline principal para orquestar la creación de videos desde una novela.
Coordina capítulos → narración (LLM) → imagen, voz y subtítulos por plano → video.
"""

import asyncio
import base64
import logging
import os
import sys
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Optional, Sequence, Type, Union

from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .config import load_config, load_prompts
from .director import (
    CHARACTER_FIELDS,
    PROP_FIELDS,
    ImagePromptBuilder,
    NarrationParser,
    build_narration_batch,
    extract_entities,
)
from .domain.contracts import ProviderSet
from .domain.models import (
    Artifact,
    ArtifactKind,
    Audio,
    Chapter,
    Character,
    Document,
    Image,
    Narration,
    NarrationScript,
    Novel,
    Prop,
    Scene,
    Shot,
    Subtitle,
    TaskStatus,
    Video,
    VideoStatus,
    VideoType,
)
from .domain.repository import NovelRepository
from .infrastructure import FFmpegClient, FFmpegError, LocalStorage
from .providers import build_providers
from .text import (
    AssSubtitleBuilder,
    ContentFilter,
    SubtitleSplitter,
    build_char_timestamps,
    calculate_segment_timestamps,
    clean_text_for_tts,
    split_chapters,
)
from .utils import DocumentStore, describe_error
from .utils.backoff import APIError, MissingNarrationVideosError, RecordNotFoundError

load_dotenv()
logger = logging.getLogger(__name__)
console = Console()

# Campos de un plano que se pueden editar sin crear versión nueva
EDITABLE_SHOT_FIELDS = (
    "narration",
    "image_prompt",
    "video_prompt",
    "camera_movement",
    "character",
    "sound_effect",
    "duration",
)

# Errores que se registran en el documento en vez de propagarse
RECORD_ERRORS = (APIError, ValueError, FFmpegError, OSError)


@dataclass
class BatchResult:
    """Resultado agregado de una operación por lotes."""
    succeeded: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed)


class NovelPipeline:
    """Orquestador del pipeline novela → video."""

    def __init__(
        self,
        config: Optional[dict] = None,
        providers: Optional[ProviderSet] = None,
        repository: Optional[NovelRepository] = None,
        storage: Optional[LocalStorage] = None,
        ffmpeg: Optional[FFmpegClient] = None,
        content_filter: Optional[ContentFilter] = None,
        prompts: Optional[dict] = None,
    ):
        """
        Inicializa el pipeline. Los componentes no indicados se crean
        la primera vez que se usan, a partir de la configuración.

        Args:
            config: Configuración (por defecto se carga config/config.yaml)
            providers: Proveedores de texto, imagen, voz y video
            repository: Repositorio de documentos
            storage: Almacenamiento de recursos binarios
            ffmpeg: Cliente de ffmpeg
            content_filter: Filtro de contenido para la narración
            prompts: Plantillas de prompts
        """
        self.config = config if config is not None else load_config()
        self.settings = self.config.get("pipeline", {})
        self.paths = self.config.get("paths", {})
        self.max_concurrency = int(self.settings.get("max_concurrency", 4))

        self._providers = providers
        self._repository = repository
        self._storage = storage
        self._ffmpeg = ffmpeg
        self._content_filter = content_filter
        self._prompts = prompts

        self.parser = NarrationParser()
        self.prompt_builder = ImagePromptBuilder(style=self.settings.get("image_style"))
        self.splitter = SubtitleSplitter(max_length=int(self.settings.get("subtitle_max_length", 12)))
        self.ass_builder = AssSubtitleBuilder(
            width=int(self.settings.get("video_width", 720)),
            height=int(self.settings.get("video_height", 1280)),
        )

    @property
    def data_dir(self) -> str:
        return self.paths.get("data_dir", "./data")

    @property
    def providers(self) -> ProviderSet:
        if self._providers is None:
            self._providers = build_providers(self.config)
        return self._providers

    @property
    def repository(self) -> NovelRepository:
        if self._repository is None:
            self._repository = NovelRepository(DocumentStore(self.data_dir))
        return self._repository

    @property
    def storage(self) -> LocalStorage:
        if self._storage is None:
            self._storage = LocalStorage(self.data_dir)
        return self._storage

    @property
    def ffmpeg(self) -> FFmpegClient:
        if self._ffmpeg is None:
            self._ffmpeg = FFmpegClient(
                width=int(self.settings.get("video_width", 720)),
                height=int(self.settings.get("video_height", 1280)),
                fps=int(self.settings.get("video_fps", 30)),
            )
        return self._ffmpeg

    @property
    def content_filter(self) -> ContentFilter:
        if self._content_filter is None:
            self._content_filter = ContentFilter.from_yaml(
                self.paths.get("content_filter", "./config/content_filter.yaml")
            )
        return self._content_filter

    @property
    def prompts(self) -> dict:
        if self._prompts is None:
            self._prompts = load_prompts(self.paths.get("prompts", "./config/prompts.yaml"))
        return self._prompts

    # ------------------------------------------------------------------
    # Novela y capítulos
    # ------------------------------------------------------------------

    def import_novel(self, title: str, text: str, target: int = 50) -> tuple[Novel, list[Chapter]]:
        """
        Divide el texto en capítulos y guarda la novela.

        Args:
            title: Título de la novela
            text: Texto completo
            target: Número de capítulos deseado

        Returns:
            Tupla (novela, capítulos)
        """
        segments = split_chapters(text, target)
        novel = Novel(title=title, chapter_count=len(segments))
        chapters = [
            Chapter(
                novel_id=novel.id,
                sequence=i,
                title=segment.title,
                chapter_text=segment.text,
                total_chars=segment.total_chars,
                word_count=segment.word_count,
                line_count=segment.line_count,
            )
            for i, segment in enumerate(segments, start=1)
        ]
        self.repository.create_many([novel, *chapters])
        logger.info(f"Novela '{title}' importada con {len(chapters)} capítulos")
        return novel, chapters

    def get_chapters(self, novel_id: str) -> list[Chapter]:
        return sorted(self.repository.find(Chapter, novel_id=novel_id), key=lambda c: c.sequence)

    # ------------------------------------------------------------------
    # Narración
    # ------------------------------------------------------------------

    def _build_prompt(self, chapter_text: str) -> str:
        template = self.prompts.get("narration_prompt")
        if not template:
            raise ValueError("Plantilla narration_prompt no configurada")
        return template.replace("{chapter_text}", chapter_text)

    def _filter_script(self, script: NarrationScript) -> NarrationScript:
        for scene in script.scenes:
            scene.narration = self.content_filter.process(scene.narration).text
            for shot in scene.shots:
                shot.narration = self.content_filter.process(shot.narration).text
        return script

    def _save_narration(self, chapter: Chapter, raw: str, prompt: str) -> Narration:
        # La validación ocurre antes de cualquier escritura
        script = self._filter_script(self.parser.parse(raw))
        version, docs = self.repository.create_version(
            chapter.id,
            ArtifactKind.NARRATION,
            lambda v: build_narration_batch(chapter.id, chapter.novel_id, v, script, prompt).documents,
        )
        narration = docs[0]
        logger.info(
            f"Narración v{version} guardada para el capítulo {chapter.sequence}: "
            f"{len(script.scenes)} escenas, {script.shot_count} planos"
        )
        self.sync_characters(chapter.novel_id, narration.id)
        self.sync_props(chapter.novel_id, narration.id)
        return narration

    async def generate_narration(self, chapter_id: str) -> Narration:
        """
        Genera una nueva versión de narración para un capítulo con el LLM.

        Raises:
            NarrationValidationError: Si el JSON del LLM no es válido (no se guarda nada)
        """
        chapter = self.repository.require(Chapter, chapter_id)
        prompt = self._build_prompt(chapter.chapter_text)
        logger.info(f"Generando narración del capítulo {chapter.sequence} con {self.providers.text.name}")
        raw = await self.providers.text.generate(prompt)
        return self._save_narration(chapter, raw, prompt)

    async def create_narration_from_text(
        self, chapter_id: str, raw_json: str, prompt: str = "manual"
    ) -> Narration:
        """Guarda una narración escrita a mano, validada igual que la del LLM."""
        chapter = self.repository.require(Chapter, chapter_id)
        return self._save_narration(chapter, raw_json, prompt)

    async def generate_narrations_for_all_chapters(self, novel_id: str) -> BatchResult:
        """Genera la narración de todos los capítulos de una novela, con concurrencia limitada."""
        self.repository.require(Novel, novel_id)
        chapters = self.get_chapters(novel_id)
        semaphore = asyncio.Semaphore(self.max_concurrency)
        result = BatchResult()

        async def run(chapter: Chapter) -> None:
            async with semaphore:
                try:
                    await self.generate_narration(chapter.id)
                    result.succeeded.append(chapter.id)
                except (APIError, ValueError) as e:
                    message = describe_error(e)
                    logger.error(f"Error en la narración del capítulo {chapter.sequence}: {message}")
                    result.failed[chapter.id] = message

        await asyncio.gather(*(run(chapter) for chapter in chapters))
        logger.info(f"Narraciones: {len(result.succeeded)} correctas, {len(result.failed)} fallidas")
        return result

    def list_narrations(self, chapter_id: str) -> list[Narration]:
        return sorted(self.repository.find(Narration, chapter_id=chapter_id), key=lambda n: n.version)

    def get_scenes(self, narration_id: str) -> list[Scene]:
        return self.repository.get_scenes(narration_id)

    def get_shots(self, narration_id: str) -> list[Shot]:
        return self.repository.get_shots(narration_id)

    def update_shot(self, shot_id: str, **fields) -> Shot:
        """
        Edita los datos de entrada de un plano sin crear versión nueva.

        Raises:
            ValueError: Si algún campo no es editable
        """
        invalid = sorted(set(fields) - set(EDITABLE_SHOT_FIELDS))
        if invalid:
            raise ValueError(f"Campos no editables: {', '.join(invalid)}")
        self.repository.require(Shot, shot_id)
        return self.repository.update(Shot, shot_id, **fields)

    def delete_narration(self, narration_id: str) -> int:
        return self.repository.delete_narration(narration_id)

    # ------------------------------------------------------------------
    # Versiones
    # ------------------------------------------------------------------

    def set_current_version(self, chapter_id: str, kind: Union[ArtifactKind, str], version: int) -> Chapter:
        return self.repository.set_current_version(chapter_id, ArtifactKind(kind), version)

    def list_versions(self, chapter_id: str, kind: Union[ArtifactKind, str]) -> list[int]:
        return self.repository.list_versions(chapter_id, ArtifactKind(kind))

    def list_artifacts(
        self, chapter_id: str, kind: Union[ArtifactKind, str], version: Optional[int] = None
    ) -> list:
        kind = ArtifactKind(kind)
        resolved = self.repository.resolve_version(chapter_id, kind, version)
        if resolved is None:
            return []
        return self.repository.list_artifacts(chapter_id, kind, resolved)

    def get_videos_by_status(self, status: Union[VideoStatus, str]) -> list[Video]:
        return self.repository.find_by_status(Video, VideoStatus(status).value)

    # ------------------------------------------------------------------
    # Personajes, objetos e imágenes de referencia
    # ------------------------------------------------------------------

    def _sync(self, model, fields: tuple[str, ...], source: str, novel_id: str, narration_id: str) -> list:
        self.repository.require(Novel, novel_id)
        narration = self.repository.require(Narration, narration_id)
        entries = extract_entities(getattr(narration, source), fields)
        synced = self.repository.sync_entities(model, novel_id, entries)
        if synced:
            logger.info(f"{len(synced)} {model.COLLECTION} sincronizados desde la narración v{narration.version}")
        return synced

    def sync_characters(self, novel_id: str, narration_id: str) -> list[Character]:
        """
        Copia los personajes de una narración a la novela.

        Un personaje con el mismo nombre se actualiza en vez de duplicarse.
        """
        return self._sync(Character, CHARACTER_FIELDS, "characters", novel_id, narration_id)

    def sync_props(self, novel_id: str, narration_id: str) -> list[Prop]:
        """Copia los objetos de una narración a la novela."""
        return self._sync(Prop, PROP_FIELDS, "props", novel_id, narration_id)

    def get_characters(self, novel_id: str) -> list[Character]:
        return self.repository.find(Character, novel_id=novel_id)

    def get_character_by_name(self, novel_id: str, name: str) -> Optional[Character]:
        return self.repository.find_by_name(Character, novel_id, name)

    def get_props(self, novel_id: str) -> list[Prop]:
        return self.repository.find(Prop, novel_id=novel_id)

    def _pending_references(self, docs: list, prompt_for: Callable[[Document], str]) -> list:
        # Los que ya tienen imagen o no tienen prompt se omiten
        pending = []
        for doc in docs:
            if doc.image_resource_id:
                logger.info(f"{type(doc).__name__} '{doc.name}' ya tiene imagen, se omite")
                continue
            prompt = prompt_for(doc)
            if not prompt:
                logger.warning(f"{type(doc).__name__} '{doc.name}' sin prompt de imagen, se omite")
                continue
            pending.append(doc.model_copy(update={"image_prompt": prompt}))
        return pending

    async def _reference_image(self, doc: Document, folder: str, filename_hint: str) -> dict:
        data = await self.providers.image.generate_image(doc.image_prompt, filename_hint=filename_hint)
        if not data:
            raise ValueError(f"El proveedor devolvió una imagen vacía para {filename_hint}")
        return {
            "image_resource_id": self.storage.save(data, "png", folder=folder),
            "image_prompt": doc.image_prompt,
        }

    async def generate_character_images(self, novel_id: str) -> BatchResult:
        """Genera la imagen de referencia de cada personaje de la novela que aún no la tiene."""
        self.repository.require(Novel, novel_id)
        characters = self._pending_references(self.get_characters(novel_id), self.prompt_builder.character_prompt)

        async def work(character: Character) -> dict:
            return await self._reference_image(character, novel_id, f"character_{character.name}")

        return await self._run_batch(Character, characters, work)

    async def generate_prop_images(self, novel_id: str) -> BatchResult:
        """Genera la imagen de referencia de cada objeto de la novela que aún no la tiene."""
        self.repository.require(Novel, novel_id)
        props = self._pending_references(self.get_props(novel_id), self.prompt_builder.prop_prompt)

        async def work(prop: Prop) -> dict:
            return await self._reference_image(prop, novel_id, f"prop_{prop.name}")

        return await self._run_batch(Prop, props, work)

    async def generate_scene_images(self, narration_id: str) -> BatchResult:
        """
        Genera la imagen de ambiente de cada escena de una narración.

        El estado de la escena no cambia: el resultado queda en
        `image_resource_id` y el fallo en `error_message`.
        """
        narration = self.repository.require(Narration, narration_id)
        chapter = self.repository.require(Chapter, narration.chapter_id)
        scenes = []
        for scene in self.repository.get_scenes(narration_id):
            if scene.image_resource_id:
                logger.info(f"La escena {scene.scene_number} ya tiene imagen, se omite")
            elif not scene.image_prompt:
                logger.warning(f"La escena {scene.scene_number} no tiene prompt de imagen, se omite")
            else:
                scenes.append(scene)

        async def work(scene: Scene) -> dict:
            data = await self.providers.image.generate_image(
                scene.image_prompt,
                filename_hint=f"chapter_{chapter.sequence:03d}_scene_{scene.scene_number}",
            )
            if not data:
                raise ValueError(f"El proveedor devolvió una imagen vacía para la escena {scene.scene_number}")
            return {"image_resource_id": self.storage.save(data, "png", folder=chapter.id)}

        return await self._run_batch(Scene, scenes, work, track_status=False)

    # ------------------------------------------------------------------
    # Recursos por plano
    # ------------------------------------------------------------------

    def _require_narration(self, chapter_id: str, version: Optional[int]) -> tuple[Narration, list[Shot]]:
        self.repository.require(Chapter, chapter_id)
        narration = self.repository.get_narration(chapter_id, version)
        if narration is None:
            raise RecordNotFoundError(f"El capítulo {chapter_id} no tiene narración")
        shots = self.repository.get_shots(narration.id)
        if not shots:
            raise RecordNotFoundError(f"La narración {narration.id} no tiene planos")
        return narration, shots

    def _completed_by_shot(
        self, chapter_id: str, kind: ArtifactKind, version: Optional[int]
    ) -> dict[str, Artifact]:
        resolved = self.repository.resolve_version(chapter_id, kind, version)
        if resolved is None:
            return {}
        return {
            doc.shot_id: doc
            for doc in self.repository.list_artifacts(chapter_id, kind, resolved)
            if doc.status.value == "completed"
        }

    async def _run_batch(
        self,
        model: Type[Document],
        records: Sequence[Document],
        work: Callable[[Document], Awaitable[Optional[dict]]],
        track_status: bool = True,
    ) -> BatchResult:
        """
        Ejecuta `work` para cada documento con concurrencia limitada.
        Cada resultado se guarda por separado; un fallo no afecta a los demás.
        `work` devuelve los campos a guardar, o None si el documento se omitió.
        Con `track_status=False` solo se escriben los cambios y `error_message`.
        """
        semaphore = asyncio.Semaphore(self.max_concurrency)
        result = BatchResult()
        completed = VideoStatus.COMPLETED if model is Video else TaskStatus.COMPLETED
        failed = VideoStatus.FAILED if model is Video else TaskStatus.FAILED

        def mark(record: Document, status, **changes) -> None:
            if track_status:
                changes["status"] = status
            self.repository.update(model, record.id, **changes)

        async def run(record: Document) -> None:
            try:
                async with semaphore:
                    changes = await work(record)
            except asyncio.CancelledError:
                mark(record, failed, error_message="cancelled")
                raise
            except RECORD_ERRORS as e:
                message = describe_error(e)
                label = getattr(record, "sequence", None) or getattr(record, "name", record.id)
                logger.error(f"Error en {model.__name__} {label}: {message}")
                mark(record, failed, error_message=message)
                result.failed[record.id] = message
                return
            if changes is None:
                return
            mark(record, completed, error_message=None, **changes)
            result.succeeded.append(record.id)

        await asyncio.gather(*(run(record) for record in records))
        logger.info(
            f"{model.__name__}: {len(result.succeeded)} correctos, {len(result.failed)} fallidos"
        )
        return result

    async def generate_images(self, chapter_id: str, narration_version: Optional[int] = None) -> BatchResult:
        """Genera una imagen por plano en una nueva versión de imágenes."""
        narration, shots = self._require_narration(chapter_id, narration_version)
        shots_by_id = {shot.id: shot for shot in shots}
        _, images = self.repository.create_version(
            chapter_id,
            ArtifactKind.IMAGE,
            lambda v: [
                Image(
                    chapter_id=chapter_id,
                    narration_id=narration.id,
                    shot_id=shot.id,
                    scene_number=shot.scene_number,
                    shot_number=shot.shot_number,
                    character_name=shot.character,
                    sequence=shot.index,
                    version=v,
                    prompt=shot.image_prompt,
                )
                for shot in shots
            ],
        )

        async def work(image: Image) -> dict:
            if not image.prompt:
                raise ValueError(f"El plano {image.shot_id} no tiene prompt de imagen")
            shot = shots_by_id[image.shot_id]
            data = await self.providers.image.generate_image(
                image.prompt, filename_hint=f"{chapter_id}_{shot.index}"
            )
            if not data:
                raise ValueError(f"El proveedor devolvió una imagen vacía para el plano {shot.index}")
            return {"resource_id": self.storage.save(data, "png", folder=chapter_id)}

        return await self._run_batch(Image, images, work)

    async def generate_audios(self, chapter_id: str, narration_version: Optional[int] = None) -> BatchResult:
        """
        Sintetiza la voz de cada plano.

        El texto se limpia antes; los planos que quedan sin texto no generan audio.
        """
        narration, shots = self._require_narration(chapter_id, narration_version)
        speed_ratio = float(self.settings.get("speed_ratio", 1.2))
        fallback_duration = float(self.settings.get("fallback_audio_duration", 10.0))

        texts = {}
        for shot in shots:
            cleaned = clean_text_for_tts(shot.narration)
            if cleaned:
                texts[shot.id] = cleaned
            else:
                logger.warning(f"Plano {shot.index} sin texto para narrar, se omite")

        _, audios = self.repository.create_version(
            chapter_id,
            ArtifactKind.AUDIO,
            lambda v: [
                Audio(
                    chapter_id=chapter_id,
                    narration_id=narration.id,
                    shot_id=shot.id,
                    sequence=shot.index,
                    version=v,
                    text=texts[shot.id],
                )
                for shot in shots
                if shot.id in texts
            ],
        )

        async def work(audio: Audio) -> dict:
            speech = await self.providers.speech.synthesize(audio.text, speed_ratio=speed_ratio)
            if not speech.audio:
                raise ValueError(f"El proveedor devolvió un audio vacío para el plano {audio.sequence}")
            timestamps = build_char_timestamps(speech.words)
            duration = speech.duration
            if duration <= 0:
                if timestamps:
                    duration = timestamps[-1].end_time
                else:
                    logger.warning(f"Audio {audio.sequence} sin duración, se usan {fallback_duration}s")
                    duration = fallback_duration
            return {
                "resource_id": self.storage.save(speech.audio, "mp3", folder=chapter_id),
                "duration": duration,
                "timestamps": [t.model_dump() for t in timestamps],
            }

        return await self._run_batch(Audio, audios, work)

    async def generate_subtitles(self, chapter_id: str, audio_version: Optional[int] = None) -> BatchResult:
        """Crea un subtítulo ASS por cada audio completado de la versión indicada."""
        self.repository.require(Chapter, chapter_id)
        audios = list(self._completed_by_shot(chapter_id, ArtifactKind.AUDIO, audio_version).values())
        if not audios:
            raise RecordNotFoundError(f"El capítulo {chapter_id} no tiene audios completados")
        audios.sort(key=lambda a: a.sequence)
        audios_by_id = {audio.id: audio for audio in audios}

        _, subtitles = self.repository.create_version(
            chapter_id,
            ArtifactKind.SUBTITLE,
            lambda v: [
                Subtitle(
                    chapter_id=chapter_id,
                    narration_id=audio.narration_id,
                    audio_id=audio.id,
                    shot_id=audio.shot_id,
                    sequence=audio.sequence,
                    version=v,
                )
                for audio in audios
            ],
        )

        async def work(subtitle: Subtitle) -> dict:
            audio = audios_by_id[subtitle.audio_id]
            segments = self.splitter.split(audio.text)
            timings = calculate_segment_timestamps(segments, audio.timestamps)
            content = self.ass_builder.build(timings, title=f"{chapter_id}-{audio.sequence}")
            return {"resource_id": self.storage.save(content.encode("utf-8"), "ass", folder=chapter_id)}

        return await self._run_batch(Subtitle, subtitles, work)

    def _image_data_url(self, resource_id: str) -> str:
        data = base64.b64encode(self.storage.load(resource_id)).decode("ascii")
        return f"data:image/png;base64,{data}"

    async def _render_shot_video(
        self, shot: Shot, image: Image, audio: Audio, subtitle: Subtitle, workdir: Path
    ) -> Path:
        max_provider = int(self.settings.get("max_provider_video_duration", 12))
        duration = audio.duration
        raw = workdir / "raw.mp4"
        if duration <= max_provider:
            clip = await self.providers.video.generate_video_from_image(
                self._image_data_url(image.resource_id),
                max(1, min(max_provider, int(duration))),
                shot.video_prompt,
            )
            if not clip:
                raise ValueError(f"El proveedor devolvió un video vacío para el plano {shot.index}")
            raw.write_bytes(clip)
        else:
            logger.info(f"Plano {shot.index} dura {duration:.1f}s, se anima la imagen con ffmpeg")
            await self.ffmpeg.create_image_video(self.storage.path(image.resource_id), raw, duration)

        subbed = await self.ffmpeg.add_subtitles(raw, self.storage.path(subtitle.resource_id), workdir / "subs.mp4")
        voiced = await self.ffmpeg.replace_audio(
            subbed, self.storage.path(audio.resource_id), workdir / "voiced.mp4", duration
        )
        return await self.ffmpeg.standardize(voiced, workdir / "final.mp4")

    async def generate_narration_videos(
        self,
        chapter_id: str,
        narration_version: Optional[int] = None,
        image_version: Optional[int] = None,
        audio_version: Optional[int] = None,
        subtitle_version: Optional[int] = None,
    ) -> BatchResult:
        """
        Genera el video de cada plano a partir de su imagen, audio y subtítulo.

        Cada video se reclama (pending → processing) antes de trabajar; si otro
        proceso ya lo reclamó se omite.
        """
        narration, shots = self._require_narration(chapter_id, narration_version)
        shots_by_id = {shot.id: shot for shot in shots}
        images = self._completed_by_shot(chapter_id, ArtifactKind.IMAGE, image_version)
        audios = self._completed_by_shot(chapter_id, ArtifactKind.AUDIO, audio_version)
        subtitles = self._completed_by_shot(chapter_id, ArtifactKind.SUBTITLE, subtitle_version)

        _, videos = self.repository.create_version(
            chapter_id,
            ArtifactKind.VIDEO,
            lambda v: [
                Video(
                    chapter_id=chapter_id,
                    narration_id=narration.id,
                    shot_id=shot.id,
                    sequence=shot.index,
                    version=v,
                    video_type=VideoType.NARRATION,
                    prompt=shot.video_prompt,
                )
                for shot in shots
            ],
        )

        async def work(video: Video) -> Optional[dict]:
            if not self.repository.claim_video(video.id):
                logger.info(f"Video {video.id} ya reclamado por otro proceso, se omite")
                return None
            shot = shots_by_id[video.shot_id]
            image = images.get(shot.id)
            audio = audios.get(shot.id)
            subtitle = subtitles.get(shot.id)
            if image is None:
                raise ValueError(f"Falta la imagen del plano {shot.index}")
            if audio is None:
                raise ValueError(f"Falta el audio del plano {shot.index}")
            if subtitle is None:
                raise ValueError(f"Falta el subtítulo del plano {shot.index}")

            with tempfile.TemporaryDirectory() as tmp:
                output = await self._render_shot_video(shot, image, audio, subtitle, Path(tmp))
                resource_id = self.storage.save_file(output, "mp4", folder=chapter_id)
            return {"resource_id": resource_id, "duration": audio.duration}

        return await self._run_batch(Video, videos, work)

    # ------------------------------------------------------------------
    # Video final
    # ------------------------------------------------------------------

    async def generate_final_video(self, chapter_id: str, version: Optional[int] = None) -> Video:
        """
        Une los videos de los planos de un capítulo en el video final.

        Args:
            chapter_id: Capítulo
            version: Versión de videos (por defecto la actual o la más reciente)

        Returns:
            Documento Video de tipo final_video

        Raises:
            MissingNarrationVideosError: Si algún plano no tiene video completado
        """
        self.repository.require(Chapter, chapter_id)
        resolved = self.repository.resolve_version(chapter_id, ArtifactKind.VIDEO, version)
        if resolved is None:
            raise MissingNarrationVideosError(f"missing narration videos: el capítulo {chapter_id} no tiene videos")

        videos = [
            v for v in self.repository.list_artifacts(chapter_id, ArtifactKind.VIDEO, resolved)
            if v.video_type == VideoType.NARRATION
        ]
        if not videos:
            raise MissingNarrationVideosError(f"missing narration videos: la versión {resolved} no tiene videos")

        narration_id = videos[0].narration_id
        shots = self.repository.get_shots(narration_id)
        completed = {v.shot_id: v for v in videos if v.status == VideoStatus.COMPLETED}
        missing = [shot for shot in shots if shot.id not in completed]
        if missing:
            raise MissingNarrationVideosError(
                f"missing narration videos: {len(missing)} de {len(shots)} planos sin video completado"
            )

        clips = [self.storage.path(completed[shot.id].resource_id) for shot in shots]
        duration = sum(completed[shot.id].duration for shot in shots)

        finish = os.getenv("FINISH_VIDEO_PATH")
        if finish and Path(finish).exists():
            clips.append(Path(finish))
            duration += await self.ffmpeg.probe_duration(Path(finish))
        elif finish:
            logger.warning(f"Video de cierre no encontrado: {finish}")

        logger.info(f"Uniendo {len(clips)} clips del capítulo {chapter_id} (v{resolved})")
        with tempfile.TemporaryDirectory() as tmp:
            joined = await self.ffmpeg.concat(clips, Path(tmp) / "joined.mp4")
            final = await self.ffmpeg.standardize(joined, Path(tmp) / "final.mp4")
            resource_id = self.storage.save_file(final, "mp4", folder=chapter_id)

        video = Video(
            chapter_id=chapter_id,
            narration_id=narration_id,
            version=resolved,
            status=VideoStatus.COMPLETED,
            video_type=VideoType.FINAL,
            resource_id=resource_id,
            duration=duration,
        )
        self.repository.create(video)
        logger.info(f"Video final guardado: {resource_id} ({duration:.1f}s)")
        return video

    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        if self._providers is not None:
            await self._providers.aclose()
        if self._repository is not None:
            self._repository.store.close()


def _print_batch(title: str, result: BatchResult) -> None:
    table = Table(title=title)
    table.add_column("Id")
    table.add_column("Estado")
    table.add_column("Error")
    for record_id in result.succeeded:
        table.add_row(record_id, "[green]completed[/green]", "")
    for record_id, error in result.failed.items():
        table.add_row(record_id, "[red]failed[/red]", error)
    console.print(table)


async def _run_command(pipeline: NovelPipeline, args) -> None:
    if args.import_file:
        text = Path(args.import_file).read_text(encoding="utf-8")
        novel, chapters = pipeline.import_novel(args.title or Path(args.import_file).stem, text, args.chapters)
        table = Table(title=f"{novel.title} ({novel.id})")
        table.add_column("#")
        table.add_column("Id")
        table.add_column("Título")
        table.add_column("Caracteres")
        for chapter in chapters:
            table.add_row(str(chapter.sequence), chapter.id, chapter.title, str(chapter.total_chars))
        console.print(table)

    elif args.narration:
        narration = await pipeline.generate_narration(args.narration)
        shots = pipeline.get_shots(narration.id)
        console.print(f"[green]✓ Narración v{narration.version} ({narration.id}): {len(shots)} planos[/green]")

    elif args.all_narrations:
        _print_batch("Narraciones", await pipeline.generate_narrations_for_all_chapters(args.all_narrations))

    elif args.manual_narration:
        if not args.json:
            raise ValueError("--manual-narration requiere --json FILE")
        raw = Path(args.json).read_text(encoding="utf-8")
        narration = await pipeline.create_narration_from_text(args.manual_narration, raw)
        console.print(f"[green]✓ Narración manual v{narration.version} ({narration.id})[/green]")

    elif args.characters:
        table = Table(title="Personajes")
        table.add_column("Nombre")
        table.add_column("Género")
        table.add_column("Descripción")
        table.add_column("Imagen")
        for character in pipeline.get_characters(args.characters):
            table.add_row(character.name, character.gender, character.description, character.image_resource_id or "")
        console.print(table)
    elif args.character_images:
        _print_batch("Imágenes de personajes", await pipeline.generate_character_images(args.character_images))
    elif args.prop_images:
        _print_batch("Imágenes de objetos", await pipeline.generate_prop_images(args.prop_images))
    elif args.scene_images:
        _print_batch("Imágenes de escenas", await pipeline.generate_scene_images(args.scene_images))

    elif args.images:
        _print_batch("Imágenes", await pipeline.generate_images(args.images))
    elif args.audios:
        _print_batch("Audios", await pipeline.generate_audios(args.audios))
    elif args.subtitles:
        _print_batch("Subtítulos", await pipeline.generate_subtitles(args.subtitles))
    elif args.videos:
        _print_batch("Videos", await pipeline.generate_narration_videos(args.videos))

    elif args.final:
        video = await pipeline.generate_final_video(args.final, args.version)
        console.print(Panel(
            f"Recurso: {pipeline.storage.path(video.resource_id)}\nDuración: {video.duration:.1f}s",
            title=f"[bold green]Video final v{video.version}[/bold green]",
        ))

    elif args.set_current:
        if not args.kind or args.version is None:
            raise ValueError("--set-current requiere --kind y --version")
        pipeline.set_current_version(args.set_current, args.kind, args.version)
        console.print(f"[green]✓ Versión actual de {args.kind}: v{args.version}[/green]")

    elif args.versions:
        if not args.kind:
            raise ValueError("--versions requiere --kind")
        versions = pipeline.list_versions(args.versions, args.kind)
        chapter = pipeline.repository.require(Chapter, args.versions)
        current = chapter.current_versions.get(args.kind)
        for version in versions:
            marker = " [bold](actual)[/bold]" if version == current else ""
            console.print(f"v{version}{marker}")
        if not versions:
            console.print("[yellow]Sin versiones[/yellow]")

    elif args.videos_by_status:
        table = Table(title=f"Videos {args.videos_by_status}")
        table.add_column("Id")
        table.add_column("Capítulo")
        table.add_column("Tipo")
        table.add_column("Versión")
        table.add_column("Error")
        for video in pipeline.get_videos_by_status(args.videos_by_status):
            table.add_row(video.id, video.chapter_id, video.video_type.value, str(video.version), video.error_message or "")
        console.print(table)

    elif args.delete_narration:
        count = pipeline.delete_narration(args.delete_narration)
        console.print(f"[green]✓ {count} documentos eliminados[/green]")


async def _run(args) -> None:
    pipeline = NovelPipeline(config=load_config(args.config))
    try:
        await _run_command(pipeline, args)
    finally:
        await pipeline.aclose()


def main():
    "Punto de entrada CLI."
    import argparse

    parser = argparse.ArgumentParser(
        description="Novel Video - de novela a video corto",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument("--config", default=None, help="Ruta a config.yaml")

    parser.add_argument("--import", dest="import_file", metavar="FILE", help="Importar una novela desde un archivo de texto")
    parser.add_argument("--title", help="Título de la novela importada")
    parser.add_argument("--chapters", type=int, default=50, help="Número de capítulos deseado")

    parser.add_argument("--narration", metavar="CHAPTER_ID", help="Generar narración de un capítulo")
    parser.add_argument("--all-narrations", metavar="NOVEL_ID", help="Generar narración de todos los capítulos")
    parser.add_argument("--manual-narration", metavar="CHAPTER_ID", help="Guardar una narración escrita a mano")
    parser.add_argument("--json", metavar="FILE", help="JSON de la narración manual")

    parser.add_argument("--images", metavar="CHAPTER_ID", help="Generar imágenes de los planos")
    parser.add_argument("--scene-images", metavar="NARRATION_ID", help="Generar imágenes de las escenas")
    parser.add_argument("--characters", metavar="NOVEL_ID", help="Listar los personajes de una novela")
    parser.add_argument("--character-images", metavar="NOVEL_ID", help="Generar imágenes de los personajes")
    parser.add_argument("--prop-images", metavar="NOVEL_ID", help="Generar imágenes de los objetos")
    parser.add_argument("--audios", metavar="CHAPTER_ID", help="Generar audios de los planos")
    parser.add_argument("--subtitles", metavar="CHAPTER_ID", help="Generar subtítulos de los audios")
    parser.add_argument("--videos", metavar="CHAPTER_ID", help="Generar videos de los planos")
    parser.add_argument("--final", metavar="CHAPTER_ID", help="Unir los videos en el video final")

    parser.add_argument("--set-current", metavar="CHAPTER_ID", help="Cambiar la versión actual")
    parser.add_argument("--versions", metavar="CHAPTER_ID", help="Listar versiones")
    parser.add_argument("--kind", choices=[k.value for k in ArtifactKind], help="Tipo de artefacto")
    parser.add_argument("--version", type=int, help="Número de versión")

    parser.add_argument("--videos-by-status", choices=[s.value for s in VideoStatus], help="Listar videos por estado")
    parser.add_argument("--delete-narration", metavar="NARRATION_ID", help="Eliminar una narración")

    args = parser.parse_args()

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        asyncio.run(_run(args))
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrumpido por el usuario[/yellow]")
        sys.exit(130)
    except (APIError, ValueError, LookupError, RuntimeError, OSError) as e:
        console.print(f"[red]Error: {describe_error(e)}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
