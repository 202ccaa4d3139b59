"""
Tests for script acquisition.
"""
import asyncio
import json
import pytest

from conftest import FakeScriptService, make_script_payload
from storyboard.script import acquire_script, build_storyboard
from storyboard.models import GenerationConfig, Language, MusicTheme, ImagePending
from storyboard.errors import GenericError, NotConfigured, RateLimited, PreconditionError
from storyboard import settings


@pytest.mark.parametrize("scene_count", [2, 3, 4, 5, 6])
def test_scenes_are_indexed_by_position(scene_count):
    payload = make_script_payload(scene_count, ids=[10 * i + 7 for i in range(scene_count)][::-1])
    service = FakeScriptService(payload=payload)

    storyboard = asyncio.run(acquire_script(service, "a robot in a forest", GenerationConfig(scene_count=scene_count)))

    assert [s.id for s in storyboard.scenes] == list(range(scene_count))
    assert [s.narrative_text for s in storyboard.scenes] == [f"Narration for scene {i}." for i in range(scene_count)]
    assert all(isinstance(s.image_state, ImagePending) for s in storyboard.scenes)


def test_payload_fields_are_mapped():
    service = FakeScriptService(payload=json.dumps(make_script_payload(2)))
    config = GenerationConfig(language=Language.bn, scene_count=2)

    storyboard = asyncio.run(acquire_script(service, "  a robot in a forest  ", config))

    assert service.calls == [("a robot in a forest", "bn", 2)]
    assert storyboard.title == "The Robot and the Forest"
    assert storyboard.music_theme == MusicTheme.mysterious
    assert storyboard.language == Language.bn
    scene = storyboard.scenes[1]
    assert scene.image_prompt == "A small robot, moment 1, glowing forest"
    assert scene.overlay_text == "Part 1"
    assert scene.description == "Scene 1 happens"


def test_unknown_music_theme_falls_back_to_none():
    storyboard = build_storyboard(make_script_payload(2, theme="jazzy"), GenerationConfig(scene_count=2))
    assert storyboard.music_theme == MusicTheme.none


def test_extra_scenes_are_truncated():
    storyboard = build_storyboard(make_script_payload(5), GenerationConfig(scene_count=3))
    assert len(storyboard.scenes) == 3


def _with_scene_field(field, value):
    payload = make_script_payload(2)
    payload["scenes"][0][field] = value
    return json.dumps(payload)


@pytest.mark.parametrize("raw", [
    "{not json",
    "[1, 2, 3]",
    json.dumps({"scenes": make_script_payload(2)["scenes"]}),
    json.dumps({"title": "No scenes"}),
    json.dumps({"title": "Too few", "scenes": make_script_payload(1)["scenes"]}),
    json.dumps({"title": "Bad scene", "scenes": [{"narratorScript": "x"}, {"narratorScript": "y"}]}),
    _with_scene_field("imagePrompt", 123),
    _with_scene_field("narratorScript", ["x"]),
    _with_scene_field("imageText", 5),
    _with_scene_field("sceneDescription", {"a": 1}),
    json.dumps({"title": "Bad scene", "scenes": ["x", "y"]}),
])
def test_malformed_responses_are_generic_errors(raw):
    service = FakeScriptService(payload=raw)
    with pytest.raises(GenericError):
        asyncio.run(acquire_script(service, "a robot", GenerationConfig(scene_count=2)))


@pytest.mark.parametrize("error", [NotConfigured("no key"), RateLimited("slow down")])
def test_classified_service_errors_propagate(error):
    service = FakeScriptService(error=error)
    with pytest.raises(type(error)):
        asyncio.run(acquire_script(service, "a robot", GenerationConfig()))


def test_unclassified_service_errors_become_generic():
    service = FakeScriptService(error=ConnectionError("connection reset"))
    with pytest.raises(GenericError) as exc:
        asyncio.run(acquire_script(service, "a robot", GenerationConfig()))
    assert exc.value.message == "connection reset"


def test_empty_prompt_is_rejected_without_calling_service():
    service = FakeScriptService()
    with pytest.raises(PreconditionError):
        asyncio.run(acquire_script(service, "   ", GenerationConfig()))
    assert service.calls == []


def test_scene_count_outside_range_is_invalid():
    from pydantic import ValidationError
    with pytest.raises(ValidationError):
        GenerationConfig(scene_count=7)
    with pytest.raises(ValidationError):
        GenerationConfig(scene_count=1)


def test_config_defaults_come_from_settings():
    config = GenerationConfig()
    assert config.language == Language(settings.DEFAULT_LANGUAGE)
    assert config.scene_count == settings.DEFAULT_SCENE_COUNT
