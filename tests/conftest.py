"""Fixtures compartidos: almacén temporal, proveedores falsos y ffmpeg falso."""

import copy
import json
from pathlib import Path

import pytest

from novel_video.config import DEFAULT_CONFIG
from novel_video.domain.contracts import (
    ImageGenerator,
    ProviderSet,
    SpeechResult,
    SpeechSynthesizer,
    TextGenerator,
    VideoGenerator,
    WordTiming,
)
from novel_video.domain.repository import NovelRepository
from novel_video.infrastructure import FFmpegClient, LocalStorage
from novel_video.pipeline import NovelPipeline
from novel_video.text import ContentFilter
from novel_video.utils import DocumentStore


def make_narration(shots_per_scene=(1, 1)) -> dict:
    scenes = []
    for scene_number, count in enumerate(shots_per_scene, start=1):
        scenes.append({
            "scene_number": str(scene_number),
            "description": f"场景{scene_number}",
            "narration": f"第{scene_number}幕。",
            "shots": [
                {
                    "closeup_number": str(shot_number),
                    "character": "林风",
                    "image": f"林风站在山门前{scene_number}-{shot_number}",
                    "narration": "林风抬头望向山门，心中暗暗发誓。警察来了。",
                    "duration": "3s",
                }
                for shot_number in range(1, count + 1)
            ],
        })
    return {
        "chapter_info": {"title": "第一章 入门"},
        "characters": [{"name": "林风"}],
        "props": [],
        "scenes": scenes,
    }


class FakeText(TextGenerator):
    name = "fake"

    def __init__(self, responses=None):
        self.responses = list(responses or [json.dumps(make_narration(), ensure_ascii=False)])
        self.prompts = []

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]


class FakeImage(ImageGenerator):
    name = "fake"

    def __init__(self):
        self.prompts = []

    async def generate_image(self, prompt: str, filename_hint: str) -> bytes:
        self.prompts.append(prompt)
        return b"\x89PNG fake"


class FakeSpeech(SpeechSynthesizer):
    name = "fake"

    def __init__(self):
        self.calls = []

    async def synthesize(self, text: str, speed_ratio: float = 1.0) -> SpeechResult:
        self.calls.append((text, speed_ratio))
        duration = len(text) * 0.2
        return SpeechResult(
            audio=b"ID3 fake",
            duration=duration,
            words=[WordTiming(word=text, start_time=0.0, end_time=duration)],
        )


class FakeVideo(VideoGenerator):
    name = "fake"

    def __init__(self):
        self.durations = []

    async def generate_video_from_image(self, image_data_url: str, duration_seconds: int, prompt: str) -> bytes:
        assert image_data_url.startswith("data:image/png;base64,")
        self.durations.append(duration_seconds)
        return b"mp4 clip"


class FakeFFmpeg(FFmpegClient):
    """Escribe archivos de relleno en vez de ejecutar ffmpeg."""

    def __init__(self, finish_duration: float = 2.0):
        super().__init__()
        self.calls = []
        self.finish_duration = finish_duration

    def _touch(self, name: str, output: Path) -> Path:
        self.calls.append(name)
        Path(output).write_bytes(f"{name}".encode())
        return output

    async def probe_duration(self, path: Path) -> float:
        self.calls.append("probe_duration")
        return self.finish_duration

    async def standardize(self, source: Path, output: Path) -> Path:
        return self._touch("standardize", output)

    async def concat(self, sources, output: Path) -> Path:
        self.concat_sources = list(sources)
        return self._touch("concat", output)

    async def add_subtitles(self, source: Path, subtitles: Path, output: Path) -> Path:
        return self._touch("add_subtitles", output)

    async def replace_audio(self, source: Path, audio: Path, output: Path, duration: float) -> Path:
        return self._touch("replace_audio", output)

    async def create_image_video(self, image: Path, output: Path, duration: float) -> Path:
        return self._touch("create_image_video", output)


@pytest.fixture
def store(tmp_path):
    s = DocumentStore(str(tmp_path / "db"))
    yield s
    s.close()


@pytest.fixture
def repository(store):
    return NovelRepository(store)


@pytest.fixture
def providers():
    return ProviderSet(text=FakeText(), image=FakeImage(), speech=FakeSpeech(), video=FakeVideo())


@pytest.fixture
def fake_ffmpeg():
    return FakeFFmpeg()


@pytest.fixture
def pipeline(tmp_path, repository, providers, fake_ffmpeg, monkeypatch):
    monkeypatch.delenv("FINISH_VIDEO_PATH", raising=False)
    config = copy.deepcopy(DEFAULT_CONFIG)
    config["paths"]["data_dir"] = str(tmp_path)
    return NovelPipeline(
        config=config,
        providers=providers,
        repository=repository,
        storage=LocalStorage(str(tmp_path)),
        ffmpeg=fake_ffmpeg,
        content_filter=ContentFilter(),
        prompts={"narration_prompt": "请改写：{chapter_text}"},
    )


@pytest.fixture
def chapter(pipeline):
    _, chapters = pipeline.import_novel("测试小说", "第一章 入门\n林风来到山门。\n第二章 试炼\n林风通过试炼。\n", 5)
    return chapters[0]
