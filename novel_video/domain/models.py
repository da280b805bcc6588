"""
Modelos de Dominio
Definen los documentos persistidos (capítulos, narraciones, planos y artefactos)
y la estructura del guion que devuelve el LLM.
"""
import re
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TaskStatus(str, Enum):
    """Estado de Narration, Scene, Shot, Image, Audio y Subtitle."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class VideoStatus(str, Enum):
    """Estado de un Video: la generación es un trabajo asíncrono, así que existe `processing`."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class VideoType(str, Enum):
    NARRATION = "narration_video"
    FINAL = "final_video"


class ArtifactKind(str, Enum):
    """Tipos de resultado versionados por capítulo."""
    NARRATION = "narration"
    IMAGE = "image"
    AUDIO = "audio"
    SUBTITLE = "subtitle"
    VIDEO = "video"

    @property
    def collection(self) -> str:
        return f"{self.value}s"


class Document(BaseModel):
    """Campos comunes de todo documento persistido."""
    COLLECTION: ClassVar[str] = ""

    id: str = Field(default_factory=new_id)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    deleted_at: Optional[datetime] = None

    def to_doc(self) -> dict:
        return self.model_dump(mode="json")

    @classmethod
    def from_doc(cls, data: dict):
        return cls.model_validate(data)


class Novel(Document):
    """Documento fuente del que se extraen los capítulos."""
    COLLECTION: ClassVar[str] = "novels"

    title: str
    chapter_count: int = 0


class Chapter(Document):
    """Un tramo de texto de la novela. Inmutable una vez dividido."""
    COLLECTION: ClassVar[str] = "chapters"

    novel_id: str
    sequence: int = Field(..., description="Número de capítulo, empieza en 1")
    title: str = ""
    chapter_text: str
    total_chars: int = Field(0, description="Caracteres chinos incluyendo puntuación")
    word_count: int = Field(0, description="Solo caracteres chinos")
    line_count: int = 0
    current_versions: Dict[str, int] = Field(
        default_factory=dict,
        description="Versión seleccionada por tipo de artefacto",
    )


class Narration(Document):
    """Una versión del guion de narración de un capítulo."""
    COLLECTION: ClassVar[str] = "narrations"

    chapter_id: str
    novel_id: str = ""
    version: int
    status: TaskStatus = TaskStatus.PENDING
    prompt: str = ""
    error_message: Optional[str] = None
    chapter_info: Dict[str, Any] = Field(default_factory=dict)
    characters: List[Any] = Field(default_factory=list)
    props: List[Any] = Field(default_factory=list)


class Scene(Document):
    COLLECTION: ClassVar[str] = "scenes"

    narration_id: str
    chapter_id: str
    scene_number: str = Field(..., description="Número legible, no necesariamente secuencial")
    description: str = ""
    image_prompt: str = ""
    narration: str = ""
    sequence: int
    version: int
    status: TaskStatus = TaskStatus.PENDING
    image_resource_id: Optional[str] = None
    error_message: Optional[str] = None


class Shot(Document):
    """Unidad mínima de generación: un fragmento narrado con su imagen, voz, subtítulo y video."""
    COLLECTION: ClassVar[str] = "shots"

    scene_id: str
    scene_number: str
    narration_id: str
    chapter_id: str
    shot_number: str
    character: str = ""
    narration: str = ""
    image_prompt: str = ""
    video_prompt: str = ""
    camera_movement: str = ""
    sound_effect: str = ""
    duration: Optional[float] = None
    sequence: int = Field(..., description="Orden dentro de la escena, empieza en 1")
    index: int = Field(..., description="Orden global dentro de la narración, empieza en 1")
    version: int
    status: TaskStatus = TaskStatus.PENDING
    error_message: Optional[str] = None


class Character(Document):
    """Personaje a nivel de novela, compartido por todos los capítulos."""
    COLLECTION: ClassVar[str] = "characters"

    novel_id: str
    name: str
    gender: str = ""
    age_group: str = ""
    role_number: str = ""
    description: str = ""
    image_prompt: str = ""
    image_resource_id: Optional[str] = None
    status: TaskStatus = TaskStatus.PENDING
    error_message: Optional[str] = None


class Prop(Document):
    """Objeto relevante de la historia (arma, talismán...), a nivel de novela."""
    COLLECTION: ClassVar[str] = "props"

    novel_id: str
    name: str
    category: str = ""
    description: str = ""
    image_prompt: str = ""
    image_resource_id: Optional[str] = None
    status: TaskStatus = TaskStatus.PENDING
    error_message: Optional[str] = None


class CharTime(BaseModel):
    """Marca de tiempo de un carácter (segundos)."""
    character: str
    start_time: float
    end_time: float


class Artifact(Document):
    """Resultado generado para un plano o para un capítulo+versión."""
    chapter_id: str
    narration_id: Optional[str] = None
    sequence: int = 1
    version: int
    status: TaskStatus = TaskStatus.PENDING
    error_message: Optional[str] = None
    resource_id: Optional[str] = None
    prompt: str = ""


class Image(Artifact):
    COLLECTION: ClassVar[str] = "images"

    shot_id: str = ""
    scene_number: str = ""
    shot_number: str = ""
    character_name: str = ""


class Audio(Artifact):
    COLLECTION: ClassVar[str] = "audios"

    shot_id: str = ""
    duration: float = 0.0
    text: str = ""
    timestamps: List[CharTime] = Field(default_factory=list)


class Subtitle(Artifact):
    COLLECTION: ClassVar[str] = "subtitles"

    audio_id: str = ""
    shot_id: str = ""
    format: str = "ass"


class Video(Artifact):
    COLLECTION: ClassVar[str] = "videos"

    status: VideoStatus = VideoStatus.PENDING
    video_type: VideoType = VideoType.NARRATION
    shot_id: str = ""
    duration: float = 0.0


ARTIFACT_MODELS = {
    ArtifactKind.NARRATION: Narration,
    ArtifactKind.IMAGE: Image,
    ArtifactKind.AUDIO: Audio,
    ArtifactKind.SUBTITLE: Subtitle,
    ArtifactKind.VIDEO: Video,
}


# ---------------------------------------------------------------------------
# Guion devuelto por el LLM
# ---------------------------------------------------------------------------

def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


class ShotScript(BaseModel):
    """Un plano (closeup) tal como lo describe el LLM."""
    model_config = ConfigDict(extra="ignore")

    closeup_number: str = Field("", description="Número de plano dentro de la escena")
    character: str = ""
    image: str = ""
    narration: str = Field("", description="Texto que se narra en este plano")
    sound_effect: str = ""
    duration: Optional[float] = None
    image_prompt: str = ""
    video_prompt: str = ""
    camera_movement: str = ""

    @field_validator(
        "closeup_number", "character", "image", "narration", "sound_effect",
        "image_prompt", "video_prompt", "camera_movement",
        mode="before",
    )
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        return _as_text(value)

    @field_validator("duration", mode="before")
    @classmethod
    def _coerce_duration(cls, value: Any) -> Optional[float]:
        # El LLM suele devolver "3s" o "3秒"
        if value is None or isinstance(value, (int, float)):
            return value
        match = re.search(r"\d+(\.\d+)?", str(value))
        return float(match.group()) if match else None


class SceneScript(BaseModel):
    model_config = ConfigDict(extra="ignore")

    scene_number: str = ""
    description: str = ""
    image_prompt: str = ""
    narration: str = ""
    shots: List[ShotScript] = Field(default_factory=list)

    @field_validator("scene_number", "description", "image_prompt", "narration", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        return _as_text(value)

    @field_validator("shots", mode="before")
    @classmethod
    def _coerce_shots(cls, value: Any) -> list:
        return value or []


class NarrationScript(BaseModel):
    """El guion completo: información del capítulo, personajes y escenas con planos."""
    model_config = ConfigDict(extra="ignore")

    chapter_info: Dict[str, Any] = Field(default_factory=dict)
    characters: List[Any] = Field(default_factory=list)
    props: List[Any] = Field(default_factory=list)
    scenes: List[SceneScript]

    @field_validator("chapter_info", mode="before")
    @classmethod
    def _coerce_info(cls, value: Any) -> dict:
        return value if isinstance(value, dict) else {}

    @field_validator("characters", "props", mode="before")
    @classmethod
    def _coerce_list(cls, value: Any) -> list:
        return value if isinstance(value, list) else []

    @property
    def shot_count(self) -> int:
        return sum(len(s.shots) for s in self.scenes)

    @property
    def narration_text(self) -> str:
        return "".join(shot.narration for scene in self.scenes for shot in scene.shots)
