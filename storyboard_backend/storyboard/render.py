import logging
from typing import Awaitable, Callable, Optional
from .models import Storyboard, VideoArtifact
from .errors import GenericError, PreconditionError
from .strings import ERRORS

logger = logging.getLogger(__name__)

RenderService = Callable[[Storyboard, Callable[[float], None]], Awaitable[VideoArtifact]]


def classify_render_failure(exc: BaseException) -> str:
    message = getattr(exc, "message", None) or str(exc)
    if "decode audio" in message.lower():
        return ERRORS["audio_decode"]
    return message or ERRORS["video_gen"]


class VideoRenderCoordinator:
    """Owns the rendered video; renders only storyboards whose images are all ready."""

    def __init__(self, service: RenderService):
        self.service = service
        self.video: Optional[VideoArtifact] = None

    def clear(self):
        self.video = None

    def ensure_renderable(self, storyboard: Optional[Storyboard]):
        if storyboard is None or not storyboard.scenes or not storyboard.all_images_ready:
            raise PreconditionError(ERRORS["video_gen"])

    async def render(self, storyboard: Optional[Storyboard], on_progress: Callable[[float], None]) -> VideoArtifact:
        self.ensure_renderable(storyboard)
        self.video = None

        def progress(fraction: float):
            on_progress(max(0.0, min(1.0, fraction)))

        logger.info(f"Rendering video for '{storyboard.title}'")
        try:
            artifact = await self.service(storyboard, progress)
        except Exception as e:
            logger.error(f"Video generation failed: {str(e)}")
            raise GenericError(classify_render_failure(e))
        self.video = artifact
        logger.info(f"Video ready: {artifact.path}")
        return artifact
