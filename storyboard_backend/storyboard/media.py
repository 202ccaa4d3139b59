import os, subprocess, shlex, logging
from typing import List
from .settings import VIDEO_WIDTH, VIDEO_HEIGHT, FPS

logger = logging.getLogger(__name__)

def write_bytes(path: str, data: bytes):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as f:
        f.write(data)

def ffmpeg_scene_clip(img_path: str, out_path: str, duration: int, w=VIDEO_WIDTH, h=VIDEO_HEIGHT, fps=FPS):
    d_frames = duration * fps
    cmd = (
        f'ffmpeg -y -loop 1 -i {shlex.quote(img_path)} '
        f'-filter_complex "[0:v]scale={w * 2}:{h * 2},zoompan=z=\'min(zoom+0.0008,1.08)\':d={d_frames}:s={w}x{h},format=yuv420p[v]" '
        f'-map "[v]" -c:v libx264 -pix_fmt yuv420p -r {fps} -t {duration} -an {shlex.quote(out_path)}'
    )
    _run(cmd)

def ffmpeg_concat(scene_files: List[str], out_tmp_path: str):
    list_path = out_tmp_path.replace(".mp4", "_concat.txt")
    with open(list_path, "w") as f:
        for p in scene_files:
            f.write(f"file '{p}'\n")
    cmd = f"ffmpeg -y -f concat -safe 0 -i {shlex.quote(list_path)} -c copy {shlex.quote(out_tmp_path)}"
    _run(cmd)

def check_audio_decodes(audio_path: str):
    """Decode the whole track once; ffmpeg's muxing step would otherwise fail late and vaguely."""
    proc = subprocess.run(
        ["ffmpeg", "-v", "error", "-i", audio_path, "-f", "null", "-"],
        stdout=subprocess.PIPE, stderr=subprocess.PIPE,
    )
    error_msg = proc.stderr.decode("utf-8", errors="ignore").strip()
    if proc.returncode != 0 or error_msg:
        logger.error(f"Background track {audio_path} failed to decode: {error_msg}")
        raise RuntimeError(f"Unable to decode audio data in {os.path.basename(audio_path)}: {error_msg}")

def ffmpeg_add_music(in_path: str, music_path: str, out_path: str, volume: float = 0.6):
    cmd = (
        f'ffmpeg -y -i {shlex.quote(in_path)} -stream_loop -1 -i {shlex.quote(music_path)} '
        f'-filter_complex "[1:a]volume={volume},afade=t=in:d=1[a]" -map 0:v -map "[a]" '
        f'-c:v copy -c:a aac -b:a 128k -shortest {shlex.quote(out_path)}'
    )
    _run(cmd)

def _run(cmd: str):
    logger.info(f"Running FFmpeg command: {cmd}")
    proc = subprocess.run(cmd, shell=True, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    if proc.returncode != 0:
        error_msg = proc.stderr.decode("utf-8", errors="ignore")
        logger.error(f"FFmpeg command failed with return code {proc.returncode}: {error_msg}")
        raise RuntimeError(f"FFmpeg failed: {error_msg}")
