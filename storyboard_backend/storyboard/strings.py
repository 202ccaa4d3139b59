"""User-facing labels and error texts."""

LOADER = {
    "script": "Generating story script & music theme...",
    "images": "Generating storyboard images...",
    "video": "Rendering video, this may take a moment...",
}

ERRORS = {
    "tts": "Text-to-speech failed.",
    "unknown": "An unknown error occurred.",
    "script": "Failed to generate story script. The prompt might be too complex or the AI service is busy. Please simplify your prompt or try again.",
    "image": "An error occurred while generating an image for a scene.",
    "rate_limit": "Image generation limit reached. The process has been stopped. Please wait a few moments before trying again.",
    "video_gen": "Video generation failed. Ensure all images were created successfully before trying again.",
    "audio_decode": "Video Generation Error: Could not decode background music. The audio file may be invalid.",
}

LANGUAGE_NAMES = {
    "en": "English",
    "bn": "Bengali",
}

# Locale used for narration when no installed voice could be selected
LANGUAGE_LOCALES = {
    "en": "en-US",
    "bn": "bn-BD",
}
