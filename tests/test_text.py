import pytest

from novel_video.text import ContentFilter, WordLists, clean_text_for_tts, split_chapters
from novel_video.text.cleaner import BRACKET_PAIRS


NOVEL = (
    "序章\n很久以前。\n"
    "第一章 入门\n林风来到山门。\n"
    "第二章 试炼\n林风通过试炼。\n"
    "第三章 下山\n林风下山历练。\n"
)


class TestSplitChapters:

    def test_rejoin_reproduces_input(self):
        chapters = split_chapters(NOVEL, 10)
        assert "".join(c.text for c in chapters) == NOVEL

    def test_text_before_first_title_goes_to_first_chapter(self):
        chapters = split_chapters(NOVEL, 10)
        assert len(chapters) == 3
        assert chapters[0].text.startswith("序章")
        assert chapters[1].title == "第二章 试炼"

    def test_too_many_titles_are_merged(self):
        text = "".join(f"第{n}章\n内容{n}。\n" for n in range(1, 7))
        chapters = split_chapters(text, 3)
        assert len(chapters) == 3
        assert "".join(c.text for c in chapters) == text

    def test_without_titles_splits_by_length(self):
        text = "这是一句话。" * 100
        chapters = split_chapters(text, 4)
        assert len(chapters) == 4
        assert "".join(c.text for c in chapters) == text
        assert all(c.text.endswith("。") for c in chapters)

    def test_counts(self):
        chapter = split_chapters("第1章\n你好，世界。\n第2章\n再见。\n", 5)[0]
        assert chapter.word_count == 6
        assert chapter.total_chars == 8
        assert chapter.line_count == 2

    def test_empty_text(self):
        assert split_chapters("", 5) == []


class TestContentFilter:

    @pytest.fixture
    def content_filter(self):
        return ContentFilter()

    def test_replacements_longest_first(self, content_filter):
        assert content_filter.filter("他回房睡觉了") == "他回房休息了"
        assert content_filter.filter("警察抓住了罪犯") == "jc抓住了嫌疑人"

    def test_serious_terms_removed(self, content_filter):
        assert content_filter.filter("两人上床了") == "两人了"

    def test_removal_that_forms_new_term_is_refiltered(self, content_filter):
        assert content_filter.filter("床床上上") == ""

    @pytest.mark.parametrize("text", [
        "床床上上，目光温柔",
        "他在监狱里睡觉\n\n\n\n醒来",
        "通缉犯   逃走了",
        "普通的一句话。",
    ])
    def test_idempotent(self, content_filter, text):
        once = content_filter.filter(text)
        assert content_filter.filter(once) == once

    def test_whitespace_normalised(self, content_filter):
        assert content_filter.filter("甲\n\n\n\n乙   丙") == "甲\n\n乙 丙"

    def test_process_reports_issues(self, content_filter):
        result = content_filter.process("毒品交易")
        assert not result.is_safe
        assert result.issues
        assert result.text == "交易"

    def test_custom_word_lists(self):
        lists = WordLists.from_dict({"replacements": {"猫": "狗"}, "serious": ["坏"]})
        assert ContentFilter(lists).filter("坏猫") == "狗"

    def test_missing_yaml_uses_defaults(self, tmp_path):
        lists = WordLists.from_yaml(str(tmp_path / "missing.yaml"))
        assert "毒品" in lists.forbidden


class TestCleanTextForTTS:

    def test_removes_bracketed_content(self):
        text = "林风（冷笑）说道【旁白】：走吧(快)&[停]{x}"
        assert clean_text_for_tts(text) == "林风说道：走吧"

    def test_unmatched_brackets_removed(self):
        cleaned = clean_text_for_tts("开始（没有结束 】还有[")
        for left, right in BRACKET_PAIRS:
            assert left not in cleaned
            assert right not in cleaned

    def test_collapses_whitespace(self):
        assert clean_text_for_tts("  你好 \n\n 世界  ") == "你好 世界"
