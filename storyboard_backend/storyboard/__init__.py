"""Prompt-to-storyboard generation: script, scene images, narration and video."""
