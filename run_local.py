#!/usr/bin/env python3
"""
Run the storyboard pipeline locally against the real services:
script, images, then a rendered video if every image succeeded.

usage: run_local.py ["prompt"] [scene_count] [language]
"""
import asyncio
import sys
import os
import httpx

# Add the backend to the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'storyboard_backend'))

from storyboard.app import create_orchestrator
from storyboard.models import GenerationConfig, Language, SettledOk
from storyboard.errors import StoryboardError

def print_snapshot(snap):
    label = getattr(snap.state, "label", snap.state.kind)
    if snap.storyboard:
        done = sum(1 for s in snap.storyboard.scenes if s.image_state.status != "pending")
        print(f"[{label}] {snap.storyboard.title}: {done}/{len(snap.storyboard.scenes)} scenes handled")
    else:
        print(f"[{label}]")
    if snap.error:
        print(f"  error: {snap.error}")

async def main():
    prompt = sys.argv[1] if len(sys.argv) > 1 else "a robot in a forest"
    scene_count = int(sys.argv[2]) if len(sys.argv) > 2 else 4
    language = Language(sys.argv[3]) if len(sys.argv) > 3 else Language.en

    orchestrator = create_orchestrator()
    orchestrator.subscribe(print_snapshot)
    try:
        try:
            await orchestrator.narration.engine.refresh_voices()
        except (StoryboardError, httpx.HTTPError) as e:
            print(f"Narration voices unavailable: {e}")
        snap = await orchestrator.submit(prompt, GenerationConfig(language=language, scene_count=scene_count))
        if snap.config_error:
            print(f"Configuration error: {snap.config_error}")
            return
        for scene in snap.storyboard.scenes if snap.storyboard else []:
            print(f"Scene {scene.id + 1}: {scene.narrative_text}")
            print(f"  image: {getattr(scene.image_state, 'image_ref', scene.image_state.status)}")

        if isinstance(snap.state, SettledOk) and snap.storyboard.all_images_ready:
            video = await orchestrator.render_video()
            if video:
                print(f"Video: {video.path} ({video.size_bytes} bytes)")
    finally:
        orchestrator.close()

if __name__ == "__main__":
    asyncio.run(main())
