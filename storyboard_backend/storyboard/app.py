import logging

# Ensure .env is loaded before importing modules that initialize API clients
from .settings import has_all_keys
from .llm import get_story_script
from .replicate_client import create_and_wait_image
from .elevenlabs_client import ElevenLabsNarrationEngine
from .render_client import render_storyboard
from .narration import NarrationController
from .render import VideoRenderCoordinator
from .orchestrator import StoryboardOrchestrator

logger = logging.getLogger(__name__)

def create_orchestrator(engine=None) -> StoryboardOrchestrator:
    """Wire the orchestrator to OpenAI, Replicate, ElevenLabs and the render service."""
    if not has_all_keys():
        logger.warning("Starting with missing API keys; the first run will report a configuration error")
    narration = NarrationController(engine if engine is not None else ElevenLabsNarrationEngine())
    return StoryboardOrchestrator(
        script_service=get_story_script,
        image_service=create_and_wait_image,
        narration=narration,
        render=VideoRenderCoordinator(render_storyboard),
    )
