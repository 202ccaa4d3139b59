import os, io, json, uuid, shutil, tempfile, asyncio, logging
from typing import Callable, List, Optional
import httpx
from PIL import Image
from .models import Storyboard, MusicTheme, VideoArtifact
from .settings import RENDER_WORKER_URL, MUSIC_DIR, SCENE_DURATION_SEC
from .media import write_bytes, ffmpeg_scene_clip, ffmpeg_concat, ffmpeg_add_music, check_audio_decodes
from .errors import StoryboardError, GenericError

logger = logging.getLogger(__name__)

Progress = Callable[[float], None]

def music_track_path(theme: MusicTheme, music_dir: str = MUSIC_DIR) -> Optional[str]:
    if theme == MusicTheme.none:
        return None
    path = os.path.join(music_dir, f"{theme.value}.mp3")
    if not os.path.exists(path):
        logger.warning(f"No background track for theme '{theme.value}' at {path}, rendering without music")
        return None
    return path

def to_png(image_data: bytes) -> bytes:
    """Re-encode anything that isn't PNG; ffmpeg's image2 demuxer trips over WebP."""
    with Image.open(io.BytesIO(image_data)) as pil_img:
        if pil_img.format == "PNG":
            return image_data
        logger.info(f"Converting {pil_img.format} to PNG")
        if pil_img.mode in ("RGBA", "LA"):
            # Flatten transparency onto white; yuv420p has no alpha
            if pil_img.mode == "LA":
                pil_img = pil_img.convert("RGBA")
            background = Image.new("RGB", pil_img.size, (255, 255, 255))
            background.paste(pil_img, mask=pil_img.split()[-1])
            pil_img = background
        elif pil_img.mode != "RGB":
            pil_img = pil_img.convert("RGB")
        png_buffer = io.BytesIO()
        pil_img.save(png_buffer, format="PNG")
        return png_buffer.getvalue()

async def download_images(storyboard: Storyboard, tmp_dir: str, report: Callable[[], None]) -> List[str]:
    paths = []
    async with httpx.AsyncClient(timeout=60) as client:
        for ref in storyboard.image_refs:
            scene_id = len(paths)
            r = await client.get(ref)
            r.raise_for_status()
            img_path = os.path.join(tmp_dir, f"scene_{scene_id}.png")
            write_bytes(img_path, to_png(r.content))
            logger.info(f"Saved image to {img_path}")
            paths.append(img_path)
            report()
    return paths

async def _render_with_worker(image_paths: List[str], music_path: Optional[str], out_path: str, duration: int):
    scenes_data = json.dumps([{"id": i, "duration_sec": duration} for i in range(len(image_paths))])
    files = []
    try:
        for i, path in enumerate(image_paths):
            files.append(("files", (f"scene_{i}.png", open(path, "rb"), "image/png")))
        if music_path:
            files.append(("music", ("music.mp3", open(music_path, "rb"), "audio/mpeg")))
        async with httpx.AsyncClient(timeout=300) as client:
            # Stream the response to disk to avoid large memory usage and truncation issues
            async with client.stream("POST", f"{RENDER_WORKER_URL}/render", files=files, data={"scenes": scenes_data}) as resp:
                if resp.status_code >= 400:
                    body_text = (await resp.aread()).decode("utf-8", errors="ignore")
                    logger.error(f"Render worker failed: status={resp.status_code}, body={body_text}")
                    raise RuntimeError(f"Render worker failed: {body_text}")
                content_type = resp.headers.get("content-type", "")
                if "video/mp4" not in content_type.lower():
                    raise RuntimeError(f"Render worker returned non-video content: {content_type}")
                with open(out_path, "wb") as f:
                    async for chunk in resp.aiter_bytes():
                        if chunk:
                            f.write(chunk)
    finally:
        for _, (_name, fh, _ctype) in files:
            fh.close()
    file_size = os.path.getsize(out_path)
    if file_size <= 1024:  # Less than 1KB is suspicious/corrupt
        raise RuntimeError(f"Worker produced tiny file ({file_size} bytes)")

async def _render_locally(image_paths: List[str], music_path: Optional[str], out_path: str, duration: int,
                          tmp_dir: str, report: Callable[[], None]):
    if music_path:
        await asyncio.to_thread(check_audio_decodes, music_path)
    clips = []
    for i, img in enumerate(image_paths):
        clip = os.path.join(tmp_dir, f"scene_{i}.mp4")
        await asyncio.to_thread(ffmpeg_scene_clip, img, clip, duration)
        clips.append(clip)
        report()
    concat_path = os.path.join(tmp_dir, "tmp_concat.mp4")
    await asyncio.to_thread(ffmpeg_concat, clips, concat_path)
    report()
    if music_path:
        await asyncio.to_thread(ffmpeg_add_music, concat_path, music_path, out_path)
    else:
        shutil.move(concat_path, out_path)
    report()

async def render_storyboard(storyboard: Storyboard, on_progress: Progress) -> VideoArtifact:
    """Render a storyboard whose scenes all have images into an MP4 with background music."""
    tmp_dir = os.path.join(tempfile.gettempdir(), "storyboard", str(uuid.uuid4()))
    os.makedirs(tmp_dir, exist_ok=True)
    scene_count = len(storyboard.scenes)
    total_steps = scene_count * 2 + 2
    done = 0

    def report():
        nonlocal done
        done += 1
        on_progress(min(done / total_steps, 1.0))

    try:
        logger.info(f"Starting video rendering for '{storyboard.title}' in {tmp_dir}")
        on_progress(0.0)
        image_paths = await download_images(storyboard, tmp_dir, report)
        music_path = music_track_path(storyboard.music_theme)
        out_path = os.path.join(tmp_dir, "final.mp4")

        rendered = False
        if RENDER_WORKER_URL:
            logger.info(f"Using external render worker at {RENDER_WORKER_URL}")
            try:
                await _render_with_worker(image_paths, music_path, out_path, SCENE_DURATION_SEC)
                rendered = True
                on_progress(1.0)
            except (httpx.HTTPError, OSError, RuntimeError) as e:
                logger.warning(f"External render worker failed: {e}. Falling back to local ffmpeg rendering.")
        if not rendered:
            await _render_locally(image_paths, music_path, out_path, SCENE_DURATION_SEC, tmp_dir, report)

        size = os.path.getsize(out_path)
        logger.info(f"Final video created: {out_path} ({size} bytes)")
        return VideoArtifact(path=out_path, size_bytes=size)
    except StoryboardError:
        shutil.rmtree(tmp_dir, ignore_errors=True)
        raise
    except Exception as e:
        logger.error(f"Video rendering failed: {str(e)}")
        shutil.rmtree(tmp_dir, ignore_errors=True)
        raise GenericError(str(e))
