"""
Scene image pipeline.

Scenes are requested strictly one after another in id order. After every
outcome a new storyboard snapshot is published before the next request is
issued, so observers see completion counts grow one scene at a time.

Failure handling differs by kind:
  NotConfigured  the scene is marked failed, published, and the error is
                 re-raised to abort the run.
  RateLimited    the scene is marked failed and the remaining scenes are
                 left pending; the rate-limit message replaces any earlier one.
  anything else  the scene is marked failed and the pipeline moves on; the
                 first such message of the run is kept.
"""
import logging
from typing import Awaitable, Callable, Optional
from pydantic import BaseModel
from .models import Storyboard, ImageReady, ImageFailed
from .errors import NotConfigured, RateLimited
from .strings import ERRORS

logger = logging.getLogger(__name__)

ImageService = Callable[[str, str], Awaitable[str]]


class ImagePipelineResult(BaseModel):
    storyboard: Storyboard
    error: Optional[str] = None
    stopped_early: bool = False


async def run_image_pipeline(
    storyboard: Storyboard,
    service: ImageService,
    publish: Callable[[Storyboard], None],
    on_scene_start: Optional[Callable[[int, int], None]] = None,
    should_continue: Optional[Callable[[], bool]] = None,
) -> ImagePipelineResult:
    total = len(storyboard.scenes)
    current = storyboard
    error: Optional[str] = None
    logger.info(f"Generating images for {total} scenes")

    for scene in storyboard.scenes:
        if should_continue is not None and not should_continue():
            logger.info(f"Image pipeline superseded before scene {scene.id}")
            return ImagePipelineResult(storyboard=current, error=error, stopped_early=True)
        if on_scene_start is not None:
            on_scene_start(scene.id + 1, total)
        logger.info(f"Processing scene {scene.id + 1}/{total}")
        try:
            image_ref = await service(scene.image_prompt, scene.overlay_text)
        except NotConfigured:
            logger.error(f"Image service not configured, aborting at scene {scene.id}")
            current = current.with_image_state(scene.id, ImageFailed())
            publish(current)
            raise
        except RateLimited as e:
            logger.warning(f"Image service rate limited at scene {scene.id}: {e.message}")
            current = current.with_image_state(scene.id, ImageFailed())
            publish(current)
            return ImagePipelineResult(storyboard=current, error=ERRORS["rate_limit"], stopped_early=True)
        except Exception as e:
            logger.error(f"Failed to generate image for scene {scene.id}: {str(e)}")
            current = current.with_image_state(scene.id, ImageFailed())
            publish(current)
            error = error or ERRORS["image"]
            continue
        current = current.with_image_state(scene.id, ImageReady(image_ref=image_ref))
        publish(current)
        logger.info(f"Scene {scene.id} image ready")

    return ImagePipelineResult(storyboard=current, error=error)
