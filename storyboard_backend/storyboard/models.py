from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from typing import Annotated, Literal, Optional, Tuple, Union
from .settings import DEFAULT_LANGUAGE, DEFAULT_SCENE_COUNT


class Language(str, Enum):
    en = "en"
    bn = "bn"


class MusicTheme(str, Enum):
    epic = "epic"
    calm = "calm"
    mysterious = "mysterious"
    upbeat = "upbeat"
    none = "none"


class GenerationConfig(BaseModel):
    """Settings captured when a run is submitted; later changes don't reach it."""
    model_config = ConfigDict(frozen=True)

    language: Language = Language(DEFAULT_LANGUAGE)
    scene_count: int = Field(DEFAULT_SCENE_COUNT, ge=2, le=6)
    voice_uri: Optional[str] = None


# Scene image states

class ImagePending(BaseModel):
    model_config = ConfigDict(frozen=True)
    status: Literal["pending"] = "pending"


class ImageReady(BaseModel):
    model_config = ConfigDict(frozen=True)
    status: Literal["ready"] = "ready"
    image_ref: str


class ImageFailed(BaseModel):
    model_config = ConfigDict(frozen=True)
    status: Literal["failed"] = "failed"


ImageState = Annotated[Union[ImagePending, ImageReady, ImageFailed], Field(discriminator="status")]


class StoryboardScene(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    narrative_text: str
    image_prompt: str
    overlay_text: str = ""
    description: str = ""
    image_state: ImageState = Field(default_factory=ImagePending)


class Storyboard(BaseModel):
    """Immutable snapshot; updates produce a new Storyboard."""
    model_config = ConfigDict(frozen=True)

    title: str
    music_theme: MusicTheme = MusicTheme.none
    language: Language = Language(DEFAULT_LANGUAGE)
    scenes: Tuple[StoryboardScene, ...]

    def with_image_state(self, scene_id: int, state) -> "Storyboard":
        scenes = list(self.scenes)
        scenes[scene_id] = scenes[scene_id].model_copy(update={"image_state": state})
        return self.model_copy(update={"scenes": tuple(scenes)})

    @property
    def all_images_ready(self) -> bool:
        return all(isinstance(s.image_state, ImageReady) for s in self.scenes)

    @property
    def image_refs(self) -> list:
        return [s.image_state.image_ref for s in self.scenes if isinstance(s.image_state, ImageReady)]


# Generation states

class Idle(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["idle"] = "idle"


class Running(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["running"] = "running"
    stage: Literal["script", "images", "video"]
    label: str
    position: Optional[int] = None
    total: Optional[int] = None


class SettledOk(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["settled_ok"] = "settled_ok"


class SettledWithError(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["settled_with_error"] = "settled_with_error"
    message: str


GenerationState = Annotated[Union[Idle, Running, SettledOk, SettledWithError], Field(discriminator="kind")]


class Voice(BaseModel):
    model_config = ConfigDict(frozen=True)

    voice_uri: str
    name: str
    lang: str
    default: bool = False


class VideoArtifact(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    size_bytes: int
    media_type: str = "video/mp4"


class OrchestratorSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    state: GenerationState
    storyboard: Optional[Storyboard] = None
    error: Optional[str] = None
    config_error: Optional[str] = None
    video: Optional[VideoArtifact] = None
    speaking_scene_id: Optional[int] = None

    @property
    def is_loading(self) -> bool:
        return isinstance(self.state, Running)
