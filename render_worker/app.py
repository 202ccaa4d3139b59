import os, tempfile, subprocess, shlex, json, shutil, logging
from typing import List, Optional
from fastapi import FastAPI, UploadFile, File, Form, HTTPException
from fastapi.responses import StreamingResponse

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Storyboard Render Worker")

WIDTH, HEIGHT, FPS = 1280, 720, 30

def _run(cmd: str):
    logger.info(f"Running FFmpeg command: {cmd}")
    proc = subprocess.run(cmd, shell=True, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    if proc.returncode != 0:
        raise RuntimeError(proc.stderr.decode("utf-8", errors="ignore"))

def parse_scenes(scenes: str) -> dict:
    """Map scene id to its duration, from the JSON list posted by the backend."""
    try:
        scenes_meta = json.loads(scenes)
        return {int(meta["id"]): max(1, int(meta["duration_sec"])) for meta in scenes_meta}
    except (ValueError, TypeError, KeyError):
        raise HTTPException(400, "invalid scenes json")

def scene_id_from_filename(name: str) -> Optional[int]:
    # expect name like scene_{id}.png
    base = os.path.splitext(name or "")[0]
    if "_" not in base:
        return None
    try:
        return int(base.split("_")[-1])
    except ValueError:
        return None

@app.get("/health")
def health():
    try:
        result = subprocess.run(["ffmpeg", "-version"], capture_output=True, text=True, timeout=5)
        ffmpeg_ok = result.returncode == 0
        ffmpeg_version = result.stdout.split('\n')[0] if ffmpeg_ok else "Not available"
    except (OSError, subprocess.SubprocessError) as e:
        ffmpeg_ok = False
        ffmpeg_version = f"Error: {str(e)}"

    return {
        "ok": True,
        "ffmpeg_available": ffmpeg_ok,
        "ffmpeg_version": ffmpeg_version,
        "temp_dir": tempfile.gettempdir(),
    }

@app.post("/render")
async def render(
    scenes: str = Form(...),
    files: List[UploadFile] = File(None),
    music: Optional[UploadFile] = File(None),
):
    durations = parse_scenes(scenes)
    if not durations:
        raise HTTPException(400, "no scenes to render")

    tmp = tempfile.mkdtemp(prefix="render-worker-")
    try:
        images = {}
        for uf in files or []:
            sid = scene_id_from_filename(uf.filename)
            if sid in durations and os.path.splitext(uf.filename)[1].lower() in (".png", ".jpg", ".jpeg"):
                p = os.path.join(tmp, f"scene_{sid}.png")
                with open(p, "wb") as f:
                    f.write(await uf.read())
                images[sid] = p
        missing = sorted(set(durations) - set(images))
        if missing:
            raise HTTPException(400, f"missing images for scenes {missing}")

        music_path = None
        if music is not None:
            music_path = os.path.join(tmp, "music.mp3")
            with open(music_path, "wb") as f:
                f.write(await music.read())
            probe = subprocess.run(["ffmpeg", "-v", "error", "-i", music_path, "-f", "null", "-"],
                                   stdout=subprocess.PIPE, stderr=subprocess.PIPE)
            err = probe.stderr.decode("utf-8", errors="ignore").strip()
            if probe.returncode != 0 or err:
                raise RuntimeError(f"Unable to decode audio data in music track: {err}")

        # Render per scene
        scene_outs = []
        for sid in sorted(durations):
            out = os.path.join(tmp, f"scene_{sid}.mp4")
            dur = durations[sid]
            _run(
                f'ffmpeg -y -loop 1 -i {shlex.quote(images[sid])} '
                f'-filter_complex "[0:v]scale={WIDTH * 2}:{HEIGHT * 2},zoompan=z=\'min(zoom+0.0008,1.08)\':d={dur * FPS}:s={WIDTH}x{HEIGHT},format=yuv420p[v]" '
                f'-map "[v]" -c:v libx264 -preset ultrafast -crf 28 -pix_fmt yuv420p -r {FPS} -t {dur} -an '
                f'-threads 1 {shlex.quote(out)}'
            )
            scene_outs.append(out)

        # Concat
        list_path = os.path.join(tmp, "concat.txt")
        with open(list_path, "w") as f:
            for p in scene_outs:
                f.write(f"file '{p}'\n")
        tmp_concat = os.path.join(tmp, "tmp_concat.mp4")
        _run(f"ffmpeg -y -f concat -safe 0 -i {shlex.quote(list_path)} -c copy {shlex.quote(tmp_concat)}")

        final_path = os.path.join(tmp, "final.mp4")
        if music_path:
            _run(f'ffmpeg -y -i {shlex.quote(tmp_concat)} -stream_loop -1 -i {shlex.quote(music_path)} '
                 f'-filter_complex "[1:a]volume=0.6,afade=t=in:d=1[a]" -map 0:v -map "[a]" '
                 f'-c:v copy -c:a aac -b:a 128k -shortest {shlex.quote(final_path)}')
        else:
            shutil.move(tmp_concat, final_path)

        file_size = os.path.getsize(final_path)
        if file_size <= 1024:  # Less than 1KB is suspicious/corrupt
            raise RuntimeError(f"Generated video file is too small ({file_size} bytes), likely corrupted")
        with open(final_path, "rb") as f:
            video_data = f.read()
    except HTTPException:
        shutil.rmtree(tmp, ignore_errors=True)
        raise
    except (OSError, RuntimeError) as e:
        logger.error(f"Render failed: {e}")
        shutil.rmtree(tmp, ignore_errors=True)
        raise HTTPException(500, str(e))
    shutil.rmtree(tmp, ignore_errors=True)

    def iterfile():
        chunk_size = 64 * 1024
        for i in range(0, len(video_data), chunk_size):
            yield video_data[i:i + chunk_size]

    headers = {
        "Content-Disposition": 'attachment; filename="storyboard.mp4"',
        "Content-Length": str(file_size)
    }
    return StreamingResponse(iterfile(), media_type="video/mp4", headers=headers)
