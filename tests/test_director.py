import json

import pytest

from novel_video.director import (
    CHARACTER_FIELDS,
    ImagePromptBuilder,
    NarrationParser,
    build_narration_batch,
    extract_entities,
)
from novel_video.domain.models import Character, Prop, TaskStatus
from novel_video.utils.backoff import NarrationValidationError

from conftest import make_narration


@pytest.fixture
def parser():
    return NarrationParser()


class TestNarrationParser:

    def test_parses_fenced_json(self, parser):
        raw = "```json\n" + json.dumps(make_narration((2, 1)), ensure_ascii=False) + "\n```"
        script = parser.parse(raw)
        assert len(script.scenes) == 2
        assert script.shot_count == 3
        assert script.scenes[0].shots[0].duration == 3.0

    def test_parses_json_surrounded_by_text(self, parser):
        raw = "好的，以下是脚本：\n" + json.dumps(make_narration(), ensure_ascii=False) + "\n希望有帮助。"
        assert parser.parse(raw).shot_count == 2

    def test_missing_scenes_rejected(self, parser):
        with pytest.raises(NarrationValidationError, match="scenes"):
            parser.parse(json.dumps({"chapter_info": {}}))

    def test_empty_scenes_rejected(self, parser):
        with pytest.raises(NarrationValidationError):
            parser.parse({"scenes": []})

    def test_no_narration_rejected(self, parser):
        data = {"scenes": [{"scene_number": "1", "shots": [{"closeup_number": "1", "narration": "  "}]}]}
        with pytest.raises(NarrationValidationError):
            parser.parse(data)

    def test_invalid_json_rejected(self, parser):
        with pytest.raises(NarrationValidationError):
            parser.parse("no es json")

    def test_quality_warnings_do_not_block(self, parser):
        data = make_narration((1, 1))
        data["scenes"][1]["scene_number"] = "5"
        script = parser.parse(data)
        warnings = parser.validate_quality(script).warnings
        assert any("escenas" in w for w in warnings)
        assert any("desordenados" in w for w in warnings)
        assert any("Longitud" in w for w in warnings)


class TestConverter:

    def test_ids_and_ordering(self, parser):
        script = parser.parse(make_narration((2, 1)))
        batch = build_narration_batch("ch1", "nv1", 3, script, prompt="p")
        nid = batch.narration.id

        assert batch.narration.version == 3
        assert batch.narration.status == TaskStatus.COMPLETED
        assert [s.id for s in batch.scenes] == [f"{nid}-scene-1-v3", f"{nid}-scene-2-v3"]
        assert [s.id for s in batch.shots] == [
            f"{nid}-shot-1-1-v3",
            f"{nid}-shot-1-2-v3",
            f"{nid}-shot-2-1-v3",
        ]
        assert [s.index for s in batch.shots] == [1, 2, 3]
        assert [s.sequence for s in batch.shots] == [1, 2, 1]
        assert batch.shots[2].scene_id == batch.scenes[1].id
        assert len(batch.documents) == 1 + 2 + 3

    def test_image_prompt_falls_back_to_image_description(self, parser):
        batch = build_narration_batch("ch1", "nv1", 1, parser.parse(make_narration()))
        assert batch.shots[0].image_prompt == "林风站在山门前1-1"

    def test_duplicate_numbers_get_unique_ids(self, parser):
        data = make_narration((1, 1))
        data["scenes"][1]["scene_number"] = "1"
        batch = build_narration_batch("ch1", "nv1", 1, parser.parse(data))
        assert len({s.id for s in batch.scenes}) == 2
        assert len({s.id for s in batch.shots}) == 2


class TestEntities:

    def test_extract_merges_by_name(self):
        entries = extract_entities(
            ["林风", {"name": "林风", "gender": "男", "extra": "x"}, {"gender": "女"}, 3, {"name": " 苏雪 ", "age_group": ""}],
            CHARACTER_FIELDS,
        )
        assert entries == [{"name": "林风", "gender": "男"}, {"name": "苏雪"}]

    def test_character_prompt(self):
        builder = ImagePromptBuilder(style="水墨")
        character = Character(novel_id="n", name="苏雪", gender="女", age_group="青年", description="白衣")
        assert builder.character_prompt(character) == "水墨。苏雪，一位女性，青年，白衣。全身立绘，纯色背景"
        assert builder.character_prompt(Character(novel_id="n", name="无名")) == ""
        assert builder.character_prompt(Character(novel_id="n", name="x", image_prompt="自定义")) == "自定义"

    def test_prop_prompt_needs_description(self):
        builder = ImagePromptBuilder()
        assert builder.prop_prompt(Prop(novel_id="n", name="玄铁剑")) == ""
        assert builder.prop_prompt(Prop(novel_id="n", name="玄铁剑", description="黑色")).startswith(builder.style)
