"""
Narration playback for storyboard scenes.

The controller owns the single speaking slot. An engine is anything shaped
like a speech synthesizer:

    get_voices() -> list of Voice
    speak(utterance)          start playback, report through the utterance callbacks
    cancel()                  stop everything; in-flight utterances report "interrupted"
    on_voices_changed         attribute the engine calls when its voice list changes
"""
import logging
from typing import Callable, List, Optional, Sequence
from .models import Voice
from .strings import ERRORS, LANGUAGE_LOCALES

logger = logging.getLogger(__name__)

INTERRUPTED = "interrupted"


class Utterance:
    def __init__(self, text: str, voice: Optional[Voice] = None, lang: str = ""):
        self.text = text
        self.voice = voice
        self.lang = lang
        self.on_end: Optional[Callable[[], None]] = None
        self.on_error: Optional[Callable[[str], None]] = None


def _language_code(language) -> str:
    return getattr(language, "value", language) or "en"


def select_voice(voices: Sequence[Voice], language) -> Optional[Voice]:
    """Default voice for the language, else any voice for it, else the first voice."""
    code = _language_code(language).lower()
    matching = [v for v in voices if v.lang.lower().startswith(code)]
    for voice in matching:
        if voice.default:
            return voice
    if matching:
        return matching[0]
    return voices[0] if voices else None


def fallback_locale(language) -> str:
    return LANGUAGE_LOCALES.get(_language_code(language), "en-US")


class NarrationController:
    def __init__(self, engine, on_error: Optional[Callable[[str], None]] = None,
                 on_change: Optional[Callable[[], None]] = None):
        self.engine = engine
        self.voices: List[Voice] = []
        self.on_error = on_error
        self.on_change = on_change
        self._active_scene_id: Optional[int] = None
        self._utterance: Optional[Utterance] = None
        engine.on_voices_changed = self._voices_changed
        self.load_voices()

    @property
    def active_scene_id(self) -> Optional[int]:
        return self._active_scene_id

    def load_voices(self):
        voices = self.engine.get_voices()
        if voices:
            self.voices = list(voices)

    def _voices_changed(self):
        logger.info("Voice list changed, stopping narration")
        self.cancel()
        self.load_voices()

    def resolve_voice(self, language, voice_uri: Optional[str] = None) -> Optional[Voice]:
        if voice_uri:
            for voice in self.voices:
                if voice.voice_uri == voice_uri:
                    return voice
        return select_voice(self.voices, language)

    def toggle(self, scene_id: int, text: str, language, voice_uri: Optional[str] = None) -> Optional[int]:
        """Start narrating a scene, or stop if that scene is already speaking.

        Returns the scene now speaking, or None.
        """
        if self._active_scene_id == scene_id:
            self.cancel()
            return None
        self.cancel()

        voice = self.resolve_voice(language, voice_uri)
        utterance = Utterance(text, voice=voice, lang=voice.lang if voice else fallback_locale(language))
        utterance.on_end = lambda: self._finished(utterance)
        utterance.on_error = lambda code: self._failed(utterance, code)

        self._utterance = utterance
        self._active_scene_id = scene_id
        logger.info(f"Narrating scene {scene_id} (voice={voice.name if voice else None}, lang={utterance.lang})")
        self.engine.speak(utterance)
        self._changed()
        return self._active_scene_id

    def cancel(self):
        """User-originated stop; the engine's resulting "interrupted" report is not an error."""
        if self._utterance is None:
            return
        logger.info(f"Cancelling narration of scene {self._active_scene_id}")
        self._clear()
        self.engine.cancel()
        self._changed()

    def close(self):
        self.cancel()
        self.engine.cancel()
        self.engine.on_voices_changed = None

    def _finished(self, utterance: Utterance):
        if utterance is not self._utterance:
            return
        logger.info(f"Narration of scene {self._active_scene_id} finished")
        self._clear()
        self._changed()

    def _failed(self, utterance: Utterance, code: str):
        if code == INTERRUPTED:
            logger.info("Speech synthesis was intentionally interrupted.")
            if utterance is self._utterance:
                self._clear()
                self._changed()
            return
        if utterance is not self._utterance:
            logger.warning(f"Ignoring error from superseded utterance: {code}")
            return
        logger.error(f"Speech synthesis error: {code}")
        self._clear()
        if self.on_error is not None:
            self.on_error(f"{ERRORS['tts']} (Reason: {code or 'unknown issue'})")
        self._changed()

    def _clear(self):
        self._utterance = None
        self._active_scene_id = None

    def _changed(self):
        if self.on_change is not None:
            self.on_change()
