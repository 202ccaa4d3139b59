SYSTEM_PROMPT = """You are a storyboard artist and screenwriter. Turn a short idea into a compact visual story:
- Each scene advances the story; the sequence has a clear beginning, middle and end.
- Narration is one or two vivid sentences per scene, written to be read aloud.
- Image prompts describe a single cinematic frame: subject, setting, lighting, camera angle, style.
- Keep the main character's appearance consistent across image prompts.
Output ONLY valid JSON matching the provided schema."""


STORY_SCHEMA = r"""{
  "title": "<short title>",
  "musicTheme": "<one of: epic, calm, mysterious, upbeat, none>",
  "scenes": [
    {
      "id": <int>,
      "sceneDescription": "<what happens in this scene>",
      "narratorScript": "<1–2 sentences of narration>",
      "imagePrompt": "<detailed English prompt for a single illustration>",
      "imageText": "<<= 6 words to overlay on the image, may be empty>"
    }
  ]
}"""


USER_PROMPT_TEMPLATE = """Inputs:
- Story idea: {prompt}
- Narration language: {language_name}
- Number of scenes: {scene_count}

Schema:
{schema}

Constraints:
- Exactly {scene_count} scenes.
- "title", "sceneDescription", "narratorScript" and "imageText" are written in {language_name}.
- "imagePrompt" is always written in English.
- Pick the musicTheme that best fits the mood of the story.
Return ONLY valid JSON for the schema above."""


IMAGE_PROMPT_SUFFIX = "cinematic storyboard frame, detailed illustration, consistent character design"

IMAGE_TEXT_TEMPLATE = 'with the caption "{text}" written in clean bold lettering at the bottom'
