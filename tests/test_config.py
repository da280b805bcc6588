from pathlib import Path

from novel_video.config import DEFAULT_CONFIG, load_config, load_prompts

CONFIG_DIR = Path(__file__).resolve().parent.parent / "config"


def test_yaml_merged_over_defaults(tmp_path, monkeypatch):
    monkeypatch.delenv("NOVEL_VIDEO_DATA_DIR", raising=False)
    path = tmp_path / "config.yaml"
    path.write_text("providers:\n  speech: edge\npipeline:\n  max_concurrency: 2\n", encoding="utf-8")

    config = load_config(str(path))

    assert config["providers"]["speech"] == "edge"
    assert config["providers"]["text"] == "openrouter"
    assert config["pipeline"]["max_concurrency"] == 2
    assert config["pipeline"]["speed_ratio"] == 1.2
    # Los valores por defecto no se modifican
    assert DEFAULT_CONFIG["pipeline"]["max_concurrency"] == 4


def test_missing_file_uses_defaults_and_env_data_dir(tmp_path, monkeypatch):
    monkeypatch.setenv("NOVEL_VIDEO_DATA_DIR", str(tmp_path / "data"))
    config = load_config(str(tmp_path / "nope.yaml"))

    assert config["providers"] == DEFAULT_CONFIG["providers"]
    assert config["paths"]["data_dir"] == str(tmp_path / "data")


def test_bundled_prompt_has_placeholder():
    prompts = load_prompts(str(CONFIG_DIR / "prompts.yaml"))
    assert "{chapter_text}" in prompts["narration_prompt"]


def test_missing_prompts(tmp_path):
    assert load_prompts(str(tmp_path / "nope.yaml")) == {}


def test_bundled_word_lists_match_defaults():
    from novel_video.text.content_filter import DEFAULT_WORD_LISTS, WordLists

    assert WordLists.from_yaml(str(CONFIG_DIR / "content_filter.yaml")) == DEFAULT_WORD_LISTS


def test_bundled_workflows():
    from novel_video.infrastructure.comfyui import load_workflow, set_load_image, set_positive_prompt

    image = set_positive_prompt(load_workflow(str(CONFIG_DIR / "comfyui_workflow.json")), "山门")
    assert image["6"]["inputs"]["text"] == "山门"
    video = set_load_image(load_workflow(str(CONFIG_DIR / "comfyui_video_workflow.json")), "in.png")
    assert video["1"]["inputs"]["image"] == "in.png"
