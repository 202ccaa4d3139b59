"""
Generation orchestrator.

A run is a two-node langgraph (script -> images). The orchestrator owns the
generation state and the current storyboard; every change is pushed to
subscribers as an immutable OrchestratorSnapshot.

Runs are numbered. Submitting again supersedes the previous run: anything
the old run publishes or settles after that point is dropped, and its image
loop stops before issuing further requests.
"""
import logging, traceback
from typing import Callable, List, Optional
from pydantic import BaseModel
from langgraph.graph import StateGraph, END
from .models import (
    GenerationConfig, Storyboard, VideoArtifact, OrchestratorSnapshot,
    Idle, Running, SettledOk, SettledWithError,
)
from .script import ScriptService, acquire_script
from .images import ImageService, run_image_pipeline
from .narration import NarrationController
from .render import VideoRenderCoordinator
from .errors import StoryboardError, NotConfigured, PreconditionError
from .strings import LOADER, ERRORS

logger = logging.getLogger(__name__)

Listener = Callable[[OrchestratorSnapshot], None]


class RunState(BaseModel):
    run_id: int
    prompt: str
    config: GenerationConfig
    storyboard: Optional[Storyboard] = None
    error: Optional[str] = None


def _field(final_state, name: str):
    # LangGraph hands back a dict of channel values; tolerate the model too
    if hasattr(final_state, "get"):
        return final_state.get(name)
    return getattr(final_state, name, None)


class StoryboardOrchestrator:
    def __init__(self, script_service: ScriptService, image_service: ImageService,
                 narration: NarrationController, render: VideoRenderCoordinator):
        self.script_service = script_service
        self.image_service = image_service
        self.narration = narration
        self.render = render
        self.narration.on_error = self._narration_failed
        self.narration.on_change = self._publish

        self._state = Idle()
        self._storyboard: Optional[Storyboard] = None
        self._config: Optional[GenerationConfig] = None
        self._error: Optional[str] = None
        self._config_error: Optional[str] = None
        self._run_id = 0
        self._listeners: List[Listener] = []
        self.graph = self._build_graph()

    # --- observation ---

    def snapshot(self) -> OrchestratorSnapshot:
        return OrchestratorSnapshot(
            state=self._state,
            storyboard=self._storyboard,
            error=self._error,
            config_error=self._config_error,
            video=self.render.video,
            speaking_scene_id=self.narration.active_scene_id,
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    def _publish(self):
        snap = self.snapshot()
        for listener in list(self._listeners):
            listener(snap)

    # --- graph ---

    def _is_current(self, run_id: int) -> bool:
        return run_id == self._run_id

    def _set_running(self, run_id: int, stage: str, label: str, position: Optional[int] = None,
                     total: Optional[int] = None):
        if not self._is_current(run_id):
            return
        self._state = Running(stage=stage, label=label, position=position, total=total)
        self._publish()

    def _publish_storyboard(self, run_id: int, storyboard: Storyboard):
        if not self._is_current(run_id):
            logger.info(f"Dropping storyboard update from superseded run {run_id}")
            return
        self._storyboard = storyboard
        self._publish()

    def _build_graph(self):
        async def node_script(state: RunState) -> dict:
            logger.info(f"Run {state.run_id}: acquiring script")
            storyboard = await acquire_script(self.script_service, state.prompt, state.config)
            if self._is_current(state.run_id):
                self._storyboard = storyboard
                self._state = Running(stage="images", label=LOADER["images"], position=0,
                                      total=len(storyboard.scenes))
                self._publish()
            return {"storyboard": storyboard}

        async def node_images(state: RunState) -> dict:
            run_id = state.run_id
            logger.info(f"Run {run_id}: generating images")

            def scene_started(position: int, total: int):
                self._set_running(run_id, "images", f"{LOADER['images']} ({position}/{total})",
                                  position=position, total=total)

            result = await run_image_pipeline(
                state.storyboard,
                self.image_service,
                publish=lambda sb: self._publish_storyboard(run_id, sb),
                on_scene_start=scene_started,
                should_continue=lambda: self._is_current(run_id),
            )
            return {"storyboard": result.storyboard, "error": result.error}

        g = StateGraph(RunState)
        g.add_node("script", node_script)
        g.add_node("images", node_images)
        g.set_entry_point("script")
        g.add_edge("script", "images")
        g.add_edge("images", END)
        return g.compile()

    # --- operations ---

    async def submit(self, prompt: str, config: Optional[GenerationConfig] = None) -> OrchestratorSnapshot:
        if self._config_error:
            logger.warning("Ignoring submit: services are not configured")
            return self.snapshot()
        if not prompt or not prompt.strip():
            return self.snapshot()
        config = config or GenerationConfig()

        self._run_id += 1
        run_id = self._run_id
        # Reset before the first network-bound call so nothing stale is visible
        self._error = None
        self._storyboard = None
        self._config = config
        self._state = Running(stage="script", label=LOADER["script"])
        self.render.clear()
        self.narration.cancel()
        self._publish()

        logger.info(f"Starting run {run_id}: {config.scene_count} scenes, language={config.language.value}")
        try:
            final_state = await self.graph.ainvoke(RunState(run_id=run_id, prompt=prompt, config=config))
        except NotConfigured as e:
            if self._is_current(run_id):
                logger.error(f"Run {run_id} aborted, services not configured: {e.message}")
                self._config_error = e.message
                self._settle(SettledWithError(message=e.message))
            return self.snapshot()
        except StoryboardError as e:
            if self._is_current(run_id):
                logger.error(f"Run {run_id} failed: {e.message}")
                self._error = e.message
                self._settle(SettledWithError(message=e.message))
            return self.snapshot()
        except Exception as e:
            logger.error(f"Run {run_id} failed unexpectedly: {str(e)}")
            logger.error(f"Full traceback: {traceback.format_exc()}")
            if self._is_current(run_id):
                self._error = ERRORS["unknown"]
                self._settle(SettledWithError(message=self._error))
            return self.snapshot()

        if not self._is_current(run_id):
            logger.info(f"Run {run_id} was superseded, discarding its result")
            return self.snapshot()
        self._storyboard = _field(final_state, "storyboard")
        error = _field(final_state, "error")
        if error:
            self._error = error
            self._settle(SettledWithError(message=error))
        else:
            self._settle(SettledOk())
        logger.info(f"Run {run_id} settled: {self._state.kind}")
        return self.snapshot()

    async def render_video(self) -> Optional[VideoArtifact]:
        if self._config_error:
            raise PreconditionError(self._config_error)
        if isinstance(self._state, Running):
            raise PreconditionError("generation is still running")
        storyboard = self._storyboard
        self.render.ensure_renderable(storyboard)

        run_id = self._run_id
        self._error = None
        self.render.clear()
        self._state = Running(stage="video", label=LOADER["video"])
        self._publish()

        def progress(fraction: float):
            self._set_running(run_id, "video", f"{LOADER['video']} ({round(fraction * 100)}%)")

        try:
            artifact = await self.render.render(storyboard, progress)
        except StoryboardError as e:
            if self._is_current(run_id):
                self._error = e.message
                self._settle(SettledWithError(message=e.message))
            return None
        if not self._is_current(run_id):
            # A new run started meanwhile and already cleared the video
            self.render.clear()
            return None
        self._settle(SettledOk())
        return artifact

    def toggle_narration(self, scene_id: int) -> Optional[int]:
        storyboard = self._storyboard
        if storyboard is None or not 0 <= scene_id < len(storyboard.scenes):
            raise PreconditionError(f"no scene {scene_id} to narrate")
        config = self._config or GenerationConfig()
        scene = storyboard.scenes[scene_id]
        return self.narration.toggle(scene_id, scene.narrative_text, storyboard.language, config.voice_uri)

    def close(self):
        logger.info("Closing orchestrator, stopping narration")
        self.narration.close()
        self._listeners.clear()

    def _settle(self, state):
        self._state = state
        self._publish()

    def _narration_failed(self, message: str):
        self._error = message
        self._publish()
