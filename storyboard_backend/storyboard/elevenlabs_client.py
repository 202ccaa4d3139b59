import os, httpx, asyncio, logging, tempfile
from typing import List, Optional, Set
from .models import Voice
from .narration import INTERRUPTED, Utterance
from .errors import NotConfigured
from .settings import ELEVENLABS_API_KEY, ELEVENLABS_VOICE_ID

logger = logging.getLogger(__name__)

API_URL = "https://api.elevenlabs.io/v1"

def _headers():
    api_key = ELEVENLABS_API_KEY
    if not api_key:
        raise NotConfigured("ELEVENLABS_API_KEY is not set; please configure your .env")
    return {
        "xi-api-key": api_key,
        "Content-Type": "application/json"
    }

def _voice_lang(raw: dict) -> str:
    for verified in raw.get("verified_languages") or []:
        lang = verified.get("locale") or verified.get("language")
        if lang:
            return lang
    labels = raw.get("labels") or {}
    return labels.get("language") or "en"

def parse_voices(payload: dict, default_voice_id: str = "") -> List[Voice]:
    return [
        Voice(
            voice_uri=raw["voice_id"],
            name=raw.get("name") or raw["voice_id"],
            lang=_voice_lang(raw),
            default=raw["voice_id"] == default_voice_id,
        )
        for raw in payload.get("voices", [])
        if raw.get("voice_id")
    ]

async def list_voices() -> List[Voice]:
    async with httpx.AsyncClient(timeout=30) as client:
        r = await client.get(f"{API_URL}/voices", headers=_headers())
        r.raise_for_status()
        return parse_voices(r.json(), ELEVENLABS_VOICE_ID)

async def tts_to_bytes(text: str, voice_id: str, max_retries: int = 3) -> bytes:
    payload = {
        "text": text,
        "model_id": "eleven_multilingual_v2",
        "voice_settings": {"stability": 0.5, "similarity_boost": 0.75},
        "optimize_streaming_latency": 2,
        "output_format": "mp3_22050_32"
    }
    url = f"{API_URL}/text-to-speech/{voice_id}"

    for attempt in range(max_retries + 1):
        try:
            async with httpx.AsyncClient(timeout=60) as client:
                r = await client.post(url, headers=_headers(), json=payload)
                r.raise_for_status()
                return r.content
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 429 and attempt < max_retries:
                # Exponential backoff: wait 2^attempt seconds
                wait_time = 2 ** attempt
                logger.warning(f"ElevenLabs rate limited (429). Retrying in {wait_time} seconds... (attempt {attempt + 1}/{max_retries + 1})")
                await asyncio.sleep(wait_time)
                continue
            raise


class ElevenLabsNarrationEngine:
    """Speech engine backed by ElevenLabs synthesis and local ffplay playback."""

    def __init__(self, player: str = "ffplay"):
        self.player = player
        self.on_voices_changed = None
        self._voices: List[Voice] = []
        self._tasks: Set[asyncio.Task] = set()

    def get_voices(self) -> List[Voice]:
        return list(self._voices)

    async def refresh_voices(self):
        voices = await list_voices()
        if voices != self._voices:
            self._voices = voices
            logger.info(f"Loaded {len(voices)} ElevenLabs voices")
            if self.on_voices_changed is not None:
                self.on_voices_changed()

    def speak(self, utterance: Utterance):
        task = asyncio.get_running_loop().create_task(self._play(utterance))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def cancel(self):
        for task in list(self._tasks):
            task.cancel()

    def _default_voice_id(self) -> Optional[str]:
        for voice in self._voices:
            if voice.default:
                return voice.voice_uri
        return ELEVENLABS_VOICE_ID or None

    async def _play(self, utterance: Utterance):
        voice_id = utterance.voice.voice_uri if utterance.voice else self._default_voice_id()
        proc = None
        path = None
        try:
            if not voice_id:
                raise NotConfigured("no ElevenLabs voice available")
            audio = await tts_to_bytes(utterance.text, voice_id)
            with tempfile.NamedTemporaryFile(prefix="narration-", suffix=".mp3", delete=False) as f:
                f.write(audio)
                path = f.name
            proc = await asyncio.create_subprocess_exec(
                self.player, "-nodisp", "-autoexit", "-loglevel", "quiet", path,
                stdout=asyncio.subprocess.DEVNULL, stderr=asyncio.subprocess.DEVNULL,
            )
            code = await proc.wait()
            if code != 0:
                raise RuntimeError(f"{self.player} exited with {code}")
        except asyncio.CancelledError:
            if proc is not None and proc.returncode is None:
                proc.kill()
            _emit_error(utterance, INTERRUPTED)
            raise
        except NotConfigured as e:
            logger.error(f"Narration not configured: {e.message}")
            _emit_error(utterance, "not-allowed")
        except httpx.HTTPError as e:
            logger.error(f"ElevenLabs request failed: {str(e)}")
            _emit_error(utterance, "network")
        except (OSError, RuntimeError) as e:
            logger.error(f"Audio playback failed: {str(e)}")
            _emit_error(utterance, "audio-hardware")
        else:
            if utterance.on_end is not None:
                utterance.on_end()
        finally:
            if path:
                try:
                    os.remove(path)
                except OSError:
                    pass


def _emit_error(utterance: Utterance, code: str):
    if utterance.on_error is not None:
        utterance.on_error(code)
