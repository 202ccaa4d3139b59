"""
Tests for the generation orchestrator: run lifecycle, error escalation,
rendering and narration through the public surface.
"""
import asyncio
import pytest

from conftest import FakeScriptService, FakeImageService, FakeRenderService, make_script_payload
from storyboard.orchestrator import StoryboardOrchestrator
from storyboard.narration import NarrationController
from storyboard.render import VideoRenderCoordinator
from storyboard.models import (
    GenerationConfig, Idle, Running, SettledOk, SettledWithError,
    ImagePending, ImageReady, ImageFailed,
)
from storyboard.errors import NotConfigured, RateLimited, GenericError, PreconditionError
from storyboard.strings import ERRORS, LOADER


def _orchestrator(engine, script=None, images=None, render=None):
    return StoryboardOrchestrator(
        script_service=script or FakeScriptService(),
        image_service=images or FakeImageService(),
        narration=NarrationController(engine),
        render=VideoRenderCoordinator(render or FakeRenderService()),
    )


def _statuses(storyboard):
    return [type(s.image_state) for s in storyboard.scenes]


class TestRuns:
    def test_all_services_succeed(self, engine):
        orch = _orchestrator(engine)

        snap = asyncio.run(orch.submit("a robot in a forest", GenerationConfig(scene_count=4)))

        assert isinstance(snap.state, SettledOk)
        assert snap.storyboard.title == "The Robot and the Forest"
        assert _statuses(snap.storyboard) == [ImageReady] * 4
        assert snap.error is None

    def test_rate_limit_on_third_scene(self, engine):
        images = FakeImageService(failures={2: RateLimited("429")})
        orch = _orchestrator(engine, images=images)

        snap = asyncio.run(orch.submit("a robot in a forest", GenerationConfig(scene_count=4)))

        assert _statuses(snap.storyboard) == [ImageReady, ImageReady, ImageFailed, ImagePending]
        assert snap.state == SettledWithError(message=ERRORS["rate_limit"])
        assert snap.error == ERRORS["rate_limit"]
        assert len(images.calls) == 3

    def test_generic_image_failure_keeps_going(self, engine):
        images = FakeImageService(failures={0: GenericError("bad"), 2: GenericError("worse")})
        orch = _orchestrator(engine, images=images)

        snap = asyncio.run(orch.submit("a robot", GenerationConfig(scene_count=4)))

        assert _statuses(snap.storyboard) == [ImageFailed, ImageReady, ImageFailed, ImageReady]
        assert snap.error == ERRORS["image"]
        assert isinstance(snap.state, SettledWithError)

    def test_empty_prompt_is_a_no_op(self, engine):
        script = FakeScriptService()
        orch = _orchestrator(engine, script=script)
        seen = []
        orch.subscribe(seen.append)

        snap = asyncio.run(orch.submit("   \n"))

        assert isinstance(snap.state, Idle)
        assert script.calls == []
        assert seen == []

    def test_script_failure_settles_with_its_message(self, engine):
        images = FakeImageService()
        orch = _orchestrator(engine, script=FakeScriptService(payload="{oops"), images=images)

        snap = asyncio.run(orch.submit("a robot"))

        assert snap.state == SettledWithError(message=ERRORS["script"])
        assert snap.storyboard is None
        assert images.calls == []
        assert snap.config_error is None

    def test_stage_labels_track_progress(self, engine):
        orch = _orchestrator(engine)
        states = []
        orch.subscribe(lambda snap: states.append(snap.state))

        asyncio.run(orch.submit("a robot", GenerationConfig(scene_count=3)))

        labels = [s.label for s in states if isinstance(s, Running)]
        assert labels[0] == LOADER["script"]
        assert f"{LOADER['images']} (1/3)" in labels
        assert f"{LOADER['images']} (3/3)" in labels
        image_states = [s for s in states if isinstance(s, Running) and s.position]
        assert sorted({(s.position, s.total) for s in image_states}) == [(1, 3), (2, 3), (3, 3)]
        assert isinstance(states[-1], SettledOk)

    def test_observers_see_completion_grow_one_at_a_time(self, engine):
        orch = _orchestrator(engine)
        counts = []

        def observe(snap):
            if snap.storyboard is not None:
                counts.append(sum(not isinstance(s.image_state, ImagePending) for s in snap.storyboard.scenes))
        orch.subscribe(observe)

        asyncio.run(orch.submit("a robot", GenerationConfig(scene_count=4)))

        assert counts == sorted(counts)
        assert set(counts) == {0, 1, 2, 3, 4}

    def test_settings_captured_at_submit(self, engine):
        script = FakeScriptService()
        orch = _orchestrator(engine, script=script)
        config = GenerationConfig(language="bn", scene_count=2)

        snap = asyncio.run(orch.submit("a robot", config))

        assert script.calls == [("a robot", "bn", 2)]
        assert snap.storyboard.language.value == "bn"

    def test_malformed_scene_surfaces_the_script_error(self, engine):
        payload = make_script_payload(2)
        payload["scenes"][0]["imagePrompt"] = 123
        orch = _orchestrator(engine, script=FakeScriptService(payload=payload))

        snap = asyncio.run(orch.submit("a robot", GenerationConfig(scene_count=2)))

        assert snap.state == SettledWithError(message="Scene 1 is malformed")
        assert snap.error == "Scene 1 is malformed"
        assert snap.storyboard is None


class TestConfigurationErrors:
    def test_script_not_configured_locks_the_orchestrator(self, engine):
        script = FakeScriptService(error=NotConfigured("OPENAI_API_KEY is not set"))
        orch = _orchestrator(engine, script=script)

        snap = asyncio.run(orch.submit("a robot"))
        assert snap.config_error == "OPENAI_API_KEY is not set"

        asyncio.run(orch.submit("another robot"))
        assert len(script.calls) == 1
        with pytest.raises(PreconditionError):
            asyncio.run(orch.render_video())

    def test_image_not_configured_aborts_run(self, engine):
        images = FakeImageService(failures={1: NotConfigured("token rejected")})
        orch = _orchestrator(engine, images=images)

        snap = asyncio.run(orch.submit("a robot", GenerationConfig(scene_count=4)))

        assert snap.config_error == "token rejected"
        assert _statuses(snap.storyboard) == [ImageReady, ImageFailed, ImagePending, ImagePending]
        assert len(images.calls) == 2
        assert not snap.is_loading


class TestRunReset:
    def test_new_run_clears_video_and_narration_before_first_call(self, engine):
        seen_at_call = []
        script = FakeScriptService()
        orch = _orchestrator(engine, script=script)
        script.on_call = lambda: seen_at_call.append(orch.snapshot())

        async def scenario():
            await orch.submit("first", GenerationConfig(scene_count=2))
            await orch.render_video()
            orch.toggle_narration(1)
            assert orch.snapshot().video is not None
            assert orch.snapshot().speaking_scene_id == 1
            await orch.submit("second", GenerationConfig(scene_count=2))

        asyncio.run(scenario())

        at_second_call = seen_at_call[1]
        assert at_second_call.video is None
        assert at_second_call.speaking_scene_id is None
        assert at_second_call.storyboard is None
        assert at_second_call.error is None
        assert at_second_call.state.label == LOADER["script"]
        assert engine.active == []

    def test_superseded_run_results_are_discarded(self, engine):
        images = FakeImageService()

        async def scenario():
            started = asyncio.Event()
            release = asyncio.Event()
            calls = []

            async def script(prompt, language, scene_count):
                calls.append(prompt)
                if prompt == "old":
                    started.set()
                    await release.wait()
                    return make_script_payload(scene_count, title="Old")
                return make_script_payload(scene_count, title="New")

            orch = _orchestrator(engine, script=script, images=images)
            first = asyncio.create_task(orch.submit("old", GenerationConfig(scene_count=2)))
            await started.wait()
            await orch.submit("new", GenerationConfig(scene_count=2))
            release.set()
            await first
            return orch.snapshot()

        snap = asyncio.run(scenario())

        assert snap.storyboard.title == "New"
        assert isinstance(snap.state, SettledOk)
        assert len(images.calls) == 2


class TestRenderVideo:
    def test_render_after_successful_run(self, engine):
        render = FakeRenderService()
        orch = _orchestrator(engine, render=render)
        labels = []
        orch.subscribe(lambda snap: labels.append(getattr(snap.state, "label", None)))

        async def scenario():
            await orch.submit("a robot", GenerationConfig(scene_count=2))
            return await orch.render_video()

        artifact = asyncio.run(scenario())

        assert artifact is not None
        assert orch.snapshot().video == artifact
        assert isinstance(orch.snapshot().state, SettledOk)
        assert f"{LOADER['video']} (50%)" in labels
        assert len(render.calls) == 1

    def test_render_rejected_when_a_scene_failed(self, engine):
        render = FakeRenderService()
        images = FakeImageService(failures={0: GenericError("bad")})
        orch = _orchestrator(engine, images=images, render=render)

        async def scenario():
            await orch.submit("a robot", GenerationConfig(scene_count=2))
            before = orch.snapshot()
            with pytest.raises(PreconditionError):
                await orch.render_video()
            return before, orch.snapshot()

        before, after = asyncio.run(scenario())

        assert render.calls == []
        assert after == before

    def test_render_audio_decode_failure(self, engine):
        render = FakeRenderService(error=GenericError("Could not decode audio track"))
        orch = _orchestrator(engine, render=render)

        async def scenario():
            await orch.submit("a robot", GenerationConfig(scene_count=2))
            return await orch.render_video()

        assert asyncio.run(scenario()) is None
        snap = orch.snapshot()
        assert snap.error == ERRORS["audio_decode"]
        assert snap.state == SettledWithError(message=ERRORS["audio_decode"])
        assert snap.video is None

    def test_rerender_clears_previous_video_before_running(self, engine):
        orch = _orchestrator(engine)
        snapshots = []

        async def scenario():
            await orch.submit("a robot", GenerationConfig(scene_count=2))
            first = await orch.render_video()
            orch.subscribe(snapshots.append)
            second = await orch.render_video()
            return first, second

        first, second = asyncio.run(scenario())

        assert first != second
        assert isinstance(snapshots[0].state, Running)
        assert snapshots[0].video is None
        assert snapshots[-1].video == second


class TestNarration:
    def test_toggle_and_error_surface(self, engine):
        orch = _orchestrator(engine)
        asyncio.run(orch.submit("a robot", GenerationConfig(scene_count=2)))

        assert orch.toggle_narration(0) == 0
        assert engine.spoken[-1].text == "Narration for scene 0."
        assert orch.toggle_narration(1) == 1
        assert orch.snapshot().speaking_scene_id == 1

        engine.fail("network")

        snap = orch.snapshot()
        assert snap.speaking_scene_id is None
        assert snap.error == f"{ERRORS['tts']} (Reason: network)"

    def test_toggle_without_storyboard(self, engine):
        orch = _orchestrator(engine)
        with pytest.raises(PreconditionError):
            orch.toggle_narration(0)

    def test_close_stops_narration(self, engine):
        orch = _orchestrator(engine)
        asyncio.run(orch.submit("a robot", GenerationConfig(scene_count=2)))
        orch.toggle_narration(0)

        orch.close()

        assert orch.snapshot().speaking_scene_id is None
        assert engine.active == []
