"""
Script acquisition: one request to the script service, materialized into the
initial storyboard skeleton with every scene pending.
"""
import json, logging
from typing import Any, Awaitable, Callable, Union
from pydantic import ValidationError
from .models import GenerationConfig, MusicTheme, Storyboard, StoryboardScene
from .errors import StoryboardError, GenericError, PreconditionError
from .strings import ERRORS

logger = logging.getLogger(__name__)

ScriptService = Callable[[str, str, int], Awaitable[Union[str, dict]]]


def _parse_payload(raw: Union[str, dict]) -> dict:
    if isinstance(raw, dict):
        return raw
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError) as e:
        logger.error(f"Script service returned invalid JSON: {e}")
        raise GenericError(ERRORS["script"])
    if not isinstance(payload, dict):
        raise GenericError(ERRORS["script"])
    return payload


def _music_theme(value: Any) -> MusicTheme:
    try:
        return MusicTheme(str(value).strip().lower())
    except ValueError:
        logger.warning(f"Unknown music theme {value!r}, using 'none'")
        return MusicTheme.none


def _build_scene(index: int, raw_scene: Any) -> StoryboardScene:
    if not isinstance(raw_scene, dict):
        raise GenericError(f"Scene {index + 1} is malformed")
    image_prompt = raw_scene.get("imagePrompt") or ""
    narrative = raw_scene.get("narratorScript") or raw_scene.get("narrativeText") or ""
    overlay = raw_scene.get("imageText") or ""
    description = raw_scene.get("sceneDescription") or ""
    if not all(isinstance(v, str) for v in (image_prompt, narrative, overlay, description)):
        raise GenericError(f"Scene {index + 1} is malformed")
    if not image_prompt.strip():
        raise GenericError(f"Scene {index + 1} has no image prompt")
    # The service's own ids are ignored; identity is the position
    try:
        return StoryboardScene(
            id=index,
            narrative_text=narrative,
            image_prompt=image_prompt,
            overlay_text=overlay,
            description=description,
        )
    except ValidationError as e:
        logger.error(f"Scene {index + 1} failed validation: {e}")
        raise GenericError(f"Scene {index + 1} is malformed")


def build_storyboard(raw: Union[str, dict], config: GenerationConfig) -> Storyboard:
    payload = _parse_payload(raw)
    title = payload.get("title")
    raw_scenes = payload.get("scenes")
    if not isinstance(title, str) or not title.strip():
        raise GenericError("Script response is missing a title")
    if not isinstance(raw_scenes, list):
        raise GenericError("Script response is missing scenes")
    if len(raw_scenes) < config.scene_count:
        raise GenericError(
            f"Script response has {len(raw_scenes)} scenes, expected {config.scene_count}"
        )
    if len(raw_scenes) > config.scene_count:
        logger.warning(f"Script response has {len(raw_scenes)} scenes, keeping the first {config.scene_count}")
    scenes = tuple(_build_scene(i, s) for i, s in enumerate(raw_scenes[:config.scene_count]))
    try:
        return Storyboard(
            title=title.strip(),
            music_theme=_music_theme(payload.get("musicTheme", "none")),
            language=config.language,
            scenes=scenes,
        )
    except ValidationError as e:
        logger.error(f"Script response failed validation: {e}")
        raise GenericError(ERRORS["script"])


async def acquire_script(service: ScriptService, prompt: str, config: GenerationConfig) -> Storyboard:
    if not prompt or not prompt.strip():
        raise PreconditionError("prompt must not be empty")
    logger.info(f"Acquiring script: {config.scene_count} scenes, language={config.language.value}")
    try:
        raw = await service(prompt.strip(), config.language.value, config.scene_count)
    except StoryboardError:
        raise
    except Exception as e:
        logger.error(f"Script service failed: {str(e)}")
        raise GenericError(str(e) or ERRORS["script"])
    storyboard = build_storyboard(raw, config)
    logger.info(f"Script acquired: '{storyboard.title}' with {len(storyboard.scenes)} scenes, theme={storyboard.music_theme.value}")
    return storyboard
