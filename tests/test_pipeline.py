import asyncio
import json

import pytest

from novel_video.domain.models import (
    ArtifactKind,
    Audio,
    Image,
    Narration,
    Scene,
    Shot,
    Subtitle,
    TaskStatus,
    Video,
    VideoStatus,
    VideoType,
)
from novel_video.utils.backoff import (
    JobTimeoutError,
    MissingNarrationVideosError,
    NarrationValidationError,
    ProviderError,
    RecordNotFoundError,
)

from conftest import FakeImage, FakeSpeech, FakeVideo, make_narration


async def prepare_shot_assets(pipeline, chapter_id):
    await pipeline.generate_narration(chapter_id)
    await pipeline.generate_images(chapter_id)
    await pipeline.generate_audios(chapter_id)
    await pipeline.generate_subtitles(chapter_id)


class TestImport:

    def test_import_novel(self, pipeline):
        novel, chapters = pipeline.import_novel("测试", "第一章\n甲。\n第二章\n乙。\n", 5)
        assert novel.chapter_count == 2
        assert [c.sequence for c in chapters] == [1, 2]
        assert [c.id for c in pipeline.get_chapters(novel.id)] == [c.id for c in chapters]


class TestNarration:

    async def test_versions_increase_and_history_is_kept(self, pipeline, chapter):
        first = await pipeline.generate_narration(chapter.id)
        first_shots = pipeline.get_shots(first.id)
        second = await pipeline.generate_narration(chapter.id)

        assert (first.version, second.version) == (1, 2)
        assert pipeline.get_shots(first.id) == first_shots
        assert [n.version for n in pipeline.list_narrations(chapter.id)] == [1, 2]
        assert pipeline.list_versions(chapter.id, "narration") == [1, 2]
        assert chapter.chapter_text in pipeline.providers.text.prompts[0]

    async def test_narration_is_filtered(self, pipeline, chapter):
        narration = await pipeline.generate_narration(chapter.id)
        shots = pipeline.get_shots(narration.id)
        assert len(shots) == 2
        assert all("警察" not in s.narration and "jc" in s.narration for s in shots)
        assert len(pipeline.get_scenes(narration.id)) == 2

    async def test_invalid_json_writes_nothing(self, pipeline, chapter, repository):
        pipeline.providers.text.responses = [json.dumps({"chapter_info": {"title": "x"}})]
        with pytest.raises(NarrationValidationError):
            await pipeline.generate_narration(chapter.id)

        assert repository.find(Narration, chapter_id=chapter.id) == []
        assert repository.find(Scene, chapter_id=chapter.id) == []
        assert repository.find(Shot, chapter_id=chapter.id) == []

    async def test_manual_narration_skips_llm(self, pipeline, chapter):
        raw = json.dumps(make_narration((3,)), ensure_ascii=False)
        narration = await pipeline.create_narration_from_text(chapter.id, raw)

        assert narration.prompt == "manual"
        assert len(pipeline.get_shots(narration.id)) == 3
        assert pipeline.providers.text.prompts == []

    async def test_all_chapters_continue_past_failures(self, pipeline, chapter):
        valid = json.dumps(make_narration(), ensure_ascii=False)
        pipeline.providers.text.responses = [valid, "sin json"]

        result = await pipeline.generate_narrations_for_all_chapters(chapter.novel_id)

        assert result.succeeded == [chapter.id]
        assert len(result.failed) == 1
        assert result.total == 2

    async def test_update_shot(self, pipeline, chapter):
        narration = await pipeline.generate_narration(chapter.id)
        shot = pipeline.get_shots(narration.id)[0]

        updated = pipeline.update_shot(shot.id, image_prompt="新的画面", duration=5)
        assert updated.image_prompt == "新的画面"
        assert updated.version == shot.version
        with pytest.raises(ValueError):
            pipeline.update_shot(shot.id, version=9)

    async def test_delete_narration(self, pipeline, chapter):
        narration = await pipeline.generate_narration(chapter.id)
        assert pipeline.delete_narration(narration.id) == 1 + 2 + 2
        assert pipeline.list_narrations(chapter.id) == []


class TestShotAssets:

    async def test_images_isolate_failures(self, pipeline, chapter, repository):
        class FailingImage(FakeImage):
            async def generate_image(self, prompt, filename_hint):
                if prompt.endswith("1-1"):
                    raise ProviderError("quota exceeded", "fake")
                return await super().generate_image(prompt, filename_hint)

        pipeline.providers.image = FailingImage()
        await pipeline.generate_narration(chapter.id)
        result = await pipeline.generate_images(chapter.id)

        assert len(result.succeeded) == 1
        assert len(result.failed) == 1
        failed = repository.require(Image, next(iter(result.failed)))
        assert failed.status == TaskStatus.FAILED
        assert "quota exceeded" in failed.error_message
        ok = repository.require(Image, result.succeeded[0])
        assert pipeline.storage.load(ok.resource_id) == b"\x89PNG fake"

    async def test_empty_image_is_not_completed(self, pipeline, chapter, repository):
        class EmptyImage(FakeImage):
            async def generate_image(self, prompt, filename_hint):
                return b""

        pipeline.providers.image = EmptyImage()
        await pipeline.generate_narration(chapter.id)
        result = await pipeline.generate_images(chapter.id)

        assert result.succeeded == []
        images = pipeline.list_artifacts(chapter.id, "image")
        assert [i.status for i in images] == [TaskStatus.FAILED, TaskStatus.FAILED]
        assert all(i.resource_id is None for i in images)
        assert all("vacía" in i.error_message for i in images)

    async def test_audios_and_subtitles(self, pipeline, chapter, repository):
        await prepare_shot_assets(pipeline, chapter.id)

        audios = repository.find(Audio, chapter_id=chapter.id)
        assert len(audios) == 2
        assert all(a.status == TaskStatus.COMPLETED for a in audios)
        assert audios[0].duration == pytest.approx(len(audios[0].text) * 0.2)
        assert len(audios[0].timestamps) == len(audios[0].text)
        assert all(speed == 1.2 for _, speed in pipeline.providers.speech.calls)

        subtitles = repository.find(Subtitle, chapter_id=chapter.id)
        assert len(subtitles) == 2
        content = pipeline.storage.load(subtitles[0].resource_id).decode("utf-8")
        assert content.startswith("[Script Info]")
        assert "Dialogue:" in content

    async def test_empty_narration_gets_no_audio(self, pipeline, chapter, repository):
        narration = await pipeline.generate_narration(chapter.id)
        first = pipeline.get_shots(narration.id)[0]
        pipeline.update_shot(first.id, narration="（旁白）")

        result = await pipeline.generate_audios(chapter.id)

        assert len(result.succeeded) == 1
        audios = repository.find(Audio, chapter_id=chapter.id)
        assert [a.shot_id for a in audios] != [first.id]
        assert len(audios) == 1

    async def test_subtitles_require_audio(self, pipeline, chapter):
        await pipeline.generate_narration(chapter.id)
        with pytest.raises(RecordNotFoundError):
            await pipeline.generate_subtitles(chapter.id)

    async def test_cancelled_task_marks_record_failed(self, pipeline, chapter, repository):
        class BlockingSpeech(FakeSpeech):
            def __init__(self):
                super().__init__()
                self.started = asyncio.Event()

            async def synthesize(self, text, speed_ratio=1.0):
                self.started.set()
                await asyncio.Event().wait()

        speech = BlockingSpeech()
        pipeline.providers.speech = speech
        await pipeline.generate_narration(chapter.id)

        task = asyncio.create_task(pipeline.generate_audios(chapter.id))
        await speech.started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        audios = repository.find(Audio, chapter_id=chapter.id)
        assert len(audios) == 2
        assert all(a.status == TaskStatus.FAILED and a.error_message == "cancelled" for a in audios)

    async def test_current_version_selects_artifacts(self, pipeline, chapter):
        await pipeline.generate_narration(chapter.id)
        await pipeline.generate_images(chapter.id)
        await pipeline.generate_images(chapter.id)

        assert {i.version for i in pipeline.list_artifacts(chapter.id, "image")} == {1}
        pipeline.set_current_version(chapter.id, ArtifactKind.IMAGE, 2)
        assert {i.version for i in pipeline.list_artifacts(chapter.id, "image")} == {2}
        assert {i.version for i in pipeline.list_artifacts(chapter.id, "image", 1)} == {1}


class TestVideos:

    async def test_narration_videos_and_final_video(self, pipeline, chapter, repository, fake_ffmpeg):
        await prepare_shot_assets(pipeline, chapter.id)

        result = await pipeline.generate_narration_videos(chapter.id)
        assert len(result.succeeded) == 2
        assert pipeline.providers.video.durations == [4, 4]
        assert fake_ffmpeg.calls.count("add_subtitles") == 2
        assert fake_ffmpeg.calls.count("replace_audio") == 2

        final = await pipeline.generate_final_video(chapter.id)

        assert final.video_type == VideoType.FINAL
        assert final.status == VideoStatus.COMPLETED
        assert final.version == 1
        assert final.duration == pytest.approx(8.4)
        assert len(fake_ffmpeg.concat_sources) == 2
        assert pipeline.storage.exists(final.resource_id)
        assert [v.id for v in repository.find(Video, video_type="final_video")] == [final.id]
        assert len(pipeline.get_videos_by_status("completed")) == 3

    async def test_final_video_appends_closing_clip(self, pipeline, chapter, fake_ffmpeg, tmp_path, monkeypatch):
        closing = tmp_path / "finish.mp4"
        closing.write_bytes(b"END")
        monkeypatch.setenv("FINISH_VIDEO_PATH", str(closing))
        await prepare_shot_assets(pipeline, chapter.id)
        await pipeline.generate_narration_videos(chapter.id)

        final = await pipeline.generate_final_video(chapter.id)

        assert fake_ffmpeg.concat_sources[-1] == closing
        assert final.duration == pytest.approx(8.4 + 2.0)

    async def test_missing_video_blocks_final(self, pipeline, chapter, repository):
        await prepare_shot_assets(pipeline, chapter.id)
        result = await pipeline.generate_narration_videos(chapter.id)
        repository.update(Video, result.succeeded[0], status=VideoStatus.FAILED)

        with pytest.raises(MissingNarrationVideosError, match="missing narration videos"):
            await pipeline.generate_final_video(chapter.id)
        assert repository.find(Video, video_type="final_video") == []

    async def test_final_without_videos(self, pipeline, chapter):
        with pytest.raises(MissingNarrationVideosError):
            await pipeline.generate_final_video(chapter.id)

    async def test_long_audio_uses_still_image_clip(self, pipeline, chapter, fake_ffmpeg):
        narration = await pipeline.generate_narration(chapter.id)
        first = pipeline.get_shots(narration.id)[0]
        pipeline.update_shot(first.id, narration="长" * 70)
        await pipeline.generate_images(chapter.id)
        await pipeline.generate_audios(chapter.id)
        await pipeline.generate_subtitles(chapter.id)

        result = await pipeline.generate_narration_videos(chapter.id)

        assert len(result.succeeded) == 2
        assert fake_ffmpeg.calls.count("create_image_video") == 1
        assert len(pipeline.providers.video.durations) == 1

    async def test_timeout_is_recorded(self, pipeline, chapter, repository):
        class SlowVideo(FakeVideo):
            async def generate_video_from_image(self, image_data_url, duration_seconds, prompt):
                raise JobTimeoutError("no terminó en 1800s", "fake", 1800)

        pipeline.providers.video = SlowVideo()
        await prepare_shot_assets(pipeline, chapter.id)
        result = await pipeline.generate_narration_videos(chapter.id)

        assert len(result.failed) == 2
        videos = repository.find(Video, chapter_id=chapter.id)
        assert all(v.status == VideoStatus.FAILED for v in videos)
        assert all(v.error_message.startswith("timeout:") for v in videos)

    async def test_missing_inputs_fail_the_record(self, pipeline, chapter, repository):
        await pipeline.generate_narration(chapter.id)
        await pipeline.generate_images(chapter.id)

        result = await pipeline.generate_narration_videos(chapter.id)

        assert len(result.failed) == 2
        assert all("audio" in message for message in result.failed.values())

    async def test_empty_clip_fails_the_record(self, pipeline, chapter):
        class EmptyVideo(FakeVideo):
            async def generate_video_from_image(self, image_data_url, duration_seconds, prompt):
                return b""

        await prepare_shot_assets(pipeline, chapter.id)
        pipeline.providers.video = EmptyVideo()
        result = await pipeline.generate_narration_videos(chapter.id)

        assert result.succeeded == []
        videos = pipeline.list_artifacts(chapter.id, "video")
        assert all(v.status == VideoStatus.FAILED for v in videos)
        assert all("video vacío" in v.error_message for v in videos)


def narration_with_entities(characters, props=(), scene_prompts=()) -> str:
    data = make_narration()
    data["characters"] = list(characters)
    data["props"] = list(props)
    for scene, prompt in zip(data["scenes"], scene_prompts):
        scene["image_prompt"] = prompt
    return json.dumps(data, ensure_ascii=False)


class TestReferenceImages:

    async def test_narrations_sync_characters_by_name(self, pipeline, chapter):
        raw = narration_with_entities([
            {"name": "林风", "gender": "男"},
            "苏雪",
            {"name": "林风", "description": "少年剑客"},
        ])
        await pipeline.create_narration_from_text(chapter.id, raw)
        second = await pipeline.create_narration_from_text(
            chapter.id, narration_with_entities([{"name": "苏雪", "gender": "女"}])
        )

        characters = pipeline.get_characters(chapter.novel_id)
        assert [c.name for c in characters] == ["林风", "苏雪"]
        lin = pipeline.get_character_by_name(chapter.novel_id, "林风")
        assert (lin.gender, lin.description) == ("男", "少年剑客")
        assert pipeline.get_character_by_name(chapter.novel_id, "苏雪").gender == "女"
        assert pipeline.get_character_by_name(chapter.novel_id, "无名") is None

        # Repetir la sincronización no duplica
        assert len(pipeline.sync_characters(chapter.novel_id, second.id)) == 1
        assert len(pipeline.get_characters(chapter.novel_id)) == 2

    async def test_character_images(self, pipeline, chapter, repository):
        raw = narration_with_entities([
            {"name": "林风", "gender": "男", "description": "少年剑客"},
            {"name": "苏雪"},
        ])
        await pipeline.create_narration_from_text(chapter.id, raw)

        result = await pipeline.generate_character_images(chapter.novel_id)

        assert result.total == 1
        lin = pipeline.get_character_by_name(chapter.novel_id, "林风")
        assert lin.status == TaskStatus.COMPLETED
        assert pipeline.storage.load(lin.image_resource_id) == b"\x89PNG fake"
        assert "一位男性" in lin.image_prompt and "少年剑客" in lin.image_prompt
        assert pipeline.providers.image.prompts == [lin.image_prompt]
        assert pipeline.get_character_by_name(chapter.novel_id, "苏雪").image_resource_id is None

        again = await pipeline.generate_character_images(chapter.novel_id)
        assert again.total == 0

    async def test_prop_images_use_given_prompt(self, pipeline, chapter):
        raw = narration_with_entities(
            [{"name": "林风"}],
            props=[{"name": "玄铁剑", "category": "武器", "image_prompt": "一把黑色长剑"}],
        )
        await pipeline.create_narration_from_text(chapter.id, raw)

        result = await pipeline.generate_prop_images(chapter.novel_id)

        assert len(result.succeeded) == 1
        sword = pipeline.get_props(chapter.novel_id)[0]
        assert (sword.name, sword.category) == ("玄铁剑", "武器")
        assert sword.image_resource_id
        assert pipeline.providers.image.prompts == ["一把黑色长剑"]

    async def test_scene_images_keep_scene_status(self, pipeline, chapter, repository):
        class FailingImage(FakeImage):
            async def generate_image(self, prompt, filename_hint):
                if prompt == "雨夜长街":
                    raise ProviderError("quota exceeded", "fake")
                return await super().generate_image(prompt, filename_hint)

        pipeline.providers.image = FailingImage()
        raw = narration_with_entities([{"name": "林风"}], scene_prompts=("山门远景", "雨夜长街"))
        narration = await pipeline.create_narration_from_text(chapter.id, raw)

        result = await pipeline.generate_scene_images(narration.id)

        assert (len(result.succeeded), len(result.failed)) == (1, 1)
        first, second = pipeline.get_scenes(narration.id)
        assert first.image_resource_id and first.error_message is None
        assert second.image_resource_id is None
        assert "quota exceeded" in second.error_message
        assert first.status == second.status == TaskStatus.COMPLETED
