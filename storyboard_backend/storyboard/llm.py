import os, logging
import openai
from .prompts import SYSTEM_PROMPT, USER_PROMPT_TEMPLATE, STORY_SCHEMA
from .settings import OPENAI_MODEL
from .strings import LANGUAGE_NAMES
from .errors import NotConfigured, RateLimited, GenericError

logger = logging.getLogger(__name__)

_client = None

def _get_client():
    global _client
    if _client is None:
        api_key = os.getenv("OPENAI_API_KEY", "")
        if not api_key:
            raise NotConfigured("OPENAI_API_KEY is not set; please configure your .env")
        _client = openai.AsyncOpenAI(api_key=api_key)
    return _client

def build_user_prompt(prompt: str, language: str, scene_count: int) -> str:
    return USER_PROMPT_TEMPLATE.format(
        prompt=prompt.strip(),
        language_name=LANGUAGE_NAMES.get(language, "English"),
        scene_count=scene_count,
        schema=STORY_SCHEMA,
    )

async def get_story_script(prompt: str, language: str, scene_count: int) -> str:
    """Ask the model for a storyboard script and return the raw JSON text."""
    logger.info(f"Calling OpenAI API to generate a {scene_count}-scene script ({language})")
    messages = [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": build_user_prompt(prompt, language, scene_count)},
    ]
    client = _get_client()
    try:
        resp = await client.chat.completions.create(
            model=OPENAI_MODEL,
            messages=messages,
            temperature=0.7,
            response_format={"type": "json_object"},
        )
    except (openai.AuthenticationError, openai.PermissionDeniedError) as e:
        logger.error(f"OpenAI rejected credentials: {str(e)}")
        raise NotConfigured(f"Script service is not configured: {e}")
    except openai.RateLimitError as e:
        logger.error(f"OpenAI rate limited: {str(e)}")
        raise RateLimited(f"Script service rate limit reached: {e}")
    except openai.OpenAIError as e:
        logger.error(f"OpenAI API call failed: {str(e)}")
        raise GenericError(str(e))
    content = resp.choices[0].message.content
    if not content:
        raise GenericError("Script service returned an empty response")
    logger.info("Successfully received response from OpenAI")
    return content
