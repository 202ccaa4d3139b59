"""
Pytest configuration and fakes for the storyboard tests.
Every collaborator is faked; nothing here touches the network.
"""
import os
import sys
import pytest

# Set test environment before importing storyboard modules
os.environ.setdefault("OPENAI_API_KEY", "sk-test-key-for-testing")
os.environ.setdefault("REPLICATE_API_TOKEN", "r8-test-token")

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "storyboard_backend"))

from storyboard.models import Voice, VideoArtifact  # noqa: E402
from storyboard.narration import INTERRUPTED  # noqa: E402


def make_script_payload(scene_count, title="The Robot and the Forest", theme="mysterious", ids=None):
    ids = ids if ids is not None else list(range(1, scene_count + 1))
    return {
        "title": title,
        "musicTheme": theme,
        "scenes": [
            {
                "id": ids[i],
                "sceneDescription": f"Scene {i} happens",
                "narratorScript": f"Narration for scene {i}.",
                "imagePrompt": f"A small robot, moment {i}, glowing forest",
                "imageText": f"Part {i}",
            }
            for i in range(scene_count)
        ],
    }


class FakeScriptService:
    def __init__(self, payload=None, error=None, on_call=None):
        self.payload = payload
        self.error = error
        self.on_call = on_call
        self.calls = []

    async def __call__(self, prompt, language, scene_count):
        self.calls.append((prompt, language, scene_count))
        if self.on_call is not None:
            self.on_call()
        if self.error is not None:
            raise self.error
        if self.payload is not None:
            return self.payload
        return make_script_payload(scene_count)


class FakeImageService:
    """Succeeds unless an exception is registered for the call's position."""

    def __init__(self, failures=None):
        self.failures = failures or {}
        self.calls = []
        self.events = []

    async def __call__(self, image_prompt, overlay_text):
        index = len(self.calls)
        self.calls.append((image_prompt, overlay_text))
        self.events.append(("start", index))
        self.events.append(("end", index))
        if index in self.failures:
            raise self.failures[index]
        return f"https://images.test/scene_{index}.png"


class FakeRenderService:
    def __init__(self, error=None, progress=(0.25, 0.5, 1.0)):
        self.error = error
        self.progress = progress
        self.calls = []

    async def __call__(self, storyboard, on_progress):
        self.calls.append(storyboard)
        for fraction in self.progress:
            on_progress(fraction)
        if self.error is not None:
            raise self.error
        return VideoArtifact(path=f"/tmp/video_{len(self.calls)}.mp4", size_bytes=4096)


class FakeEngine:
    """Speech engine double; cancel() reports "interrupted" like a browser synthesizer."""

    def __init__(self, voices=None):
        self.voices = list(voices or [])
        self.on_voices_changed = None
        self.spoken = []
        self.active = []
        self.cancel_count = 0

    def get_voices(self):
        return list(self.voices)

    def speak(self, utterance):
        self.spoken.append(utterance)
        self.active.append(utterance)

    def cancel(self):
        self.cancel_count += 1
        interrupted, self.active = self.active, []
        for utterance in interrupted:
            utterance.on_error(INTERRUPTED)

    def finish(self):
        utterance = self.active.pop(0)
        utterance.on_end()

    def fail(self, code):
        utterance = self.active.pop(0)
        utterance.on_error(code)

    def change_voices(self, voices):
        self.voices = list(voices)
        if self.on_voices_changed is not None:
            self.on_voices_changed()


@pytest.fixture
def voices():
    return [
        Voice(voice_uri="bn-1", name="Tanisha", lang="bn-BD"),
        Voice(voice_uri="en-1", name="Rachel", lang="en-US"),
        Voice(voice_uri="en-2", name="Adam", lang="en-GB", default=True),
    ]


@pytest.fixture
def engine(voices):
    return FakeEngine(voices)
