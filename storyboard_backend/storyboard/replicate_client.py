import os, time, httpx, asyncio, logging
from .settings import REPLICATE_POLL_INTERVAL_MS, REPLICATE_POLL_TIMEOUT_S, REPLICATE_MODEL_VERSION
from .prompts import IMAGE_PROMPT_SUFFIX, IMAGE_TEXT_TEMPLATE
from .errors import NotConfigured, RateLimited, GenericError

logger = logging.getLogger(__name__)

PREDICTIONS_URL = "https://api.replicate.com/v1/predictions"

def _headers():
    token = os.getenv("REPLICATE_API_TOKEN", "")
    if not token:
        raise NotConfigured("REPLICATE_API_TOKEN is not set; please configure your .env")
    return {"Authorization": f"Token {token}"}

def _model_selector() -> str:
    # Prefer explicit version from env for stability; fall back to a public model alias (latest).
    return REPLICATE_MODEL_VERSION or "black-forest-labs/flux-schnell"

def _parse_selector(selector: str):
    # Returns a tuple (mode, data)
    # mode == "version": data={"version": <hash>}
    # mode == "model": data={"owner": <owner>, "name": <name>}
    if "/" in selector:
        owner_name, _, _version_alias = selector.partition(":")
        if "/" in owner_name:
            owner, name = owner_name.split("/", 1)
            return "model", {"owner": owner, "name": name}
    return "version", {"version": selector}

def build_image_prompt(image_prompt: str, overlay_text: str = "") -> str:
    prompt = f"{image_prompt.strip()}, {IMAGE_PROMPT_SUFFIX}"
    if overlay_text and overlay_text.strip():
        prompt = f"{prompt}, {IMAGE_TEXT_TEMPLATE.format(text=overlay_text.strip())}"
    return prompt

def check_response(r: httpx.Response, action: str):
    """Map a failed Replicate response onto the storyboard error taxonomy."""
    if r.status_code < 400:
        return
    logger.error(f"Replicate {action} failed {r.status_code}: {r.text}")
    if r.status_code in (401, 403):
        raise NotConfigured(f"Replicate rejected the API token ({r.status_code})")
    if r.status_code == 429:
        raise RateLimited(f"Replicate rate limit reached during {action}")
    raise GenericError(f"Replicate {action} failed {r.status_code}: {r.text}")

async def _asleep(sec: float):
    await asyncio.sleep(sec)

async def create_and_wait_image(image_prompt: str, overlay_text: str = "") -> str:
    prompt = build_image_prompt(image_prompt, overlay_text)
    logger.info(f"Starting Replicate image generation for prompt: {prompt[:100]}...")

    try:
        async with httpx.AsyncClient(timeout=30) as client:
            selector = _model_selector()
            logger.info(f"Using Replicate model: {selector}")

            json_body = {
                "input": {
                    "prompt": prompt,
                    "num_outputs": 1,
                    "aspect_ratio": "16:9",
                }
            }
            mode, data = _parse_selector(selector)
            if mode == "version":
                json_body["version"] = data["version"]
                url = PREDICTIONS_URL
            else:
                url = f"https://api.replicate.com/v1/models/{data['owner']}/{data['name']}/predictions"

            async def _create(url_to_use: str, body: dict):
                return await client.post(
                    url_to_use,
                    headers={**_headers(), "Content-Type": "application/json"},
                    json=body,
                )

            r = await _create(url, json_body)
            if mode == "model" and r.status_code == 404:
                # Model endpoint can 404 on aliasing/visibility; resolve the latest version instead
                logger.info("Falling back to latest version resolution for model")
                model_resp = await client.get(
                    f"https://api.replicate.com/v1/models/{data['owner']}/{data['name']}",
                    headers=_headers()
                )
                check_response(model_resp, "model lookup")
                version_id = (model_resp.json().get("latest_version") or {}).get("id")
                if not version_id:
                    raise GenericError("Could not resolve latest version for model")
                logger.info(f"Resolved latest version: {version_id}")
                r = await _create(PREDICTIONS_URL, {**json_body, "version": version_id})
            check_response(r, "create")
            pred_id = r.json()["id"]
            logger.info(f"Replicate prediction created with ID: {pred_id}")

            start = time.time()
            while True:
                s = await client.get(f"{PREDICTIONS_URL}/{pred_id}", headers=_headers())
                check_response(s, "status")
                body = s.json()
                status = body.get("status")
                logger.info(f"Replicate prediction {pred_id} status: {status}")

                if status in ("succeeded", "failed", "canceled"):
                    if status != "succeeded":
                        error_detail = body.get("error")
                        logger.error(f"Replicate failed: {status}. logs={body.get('logs')} error={error_detail}")
                        raise GenericError(f"Replicate failed: {status}. error={error_detail}")
                    output = body.get("output")
                    if isinstance(output, str) and output:
                        return output
                    if isinstance(output, list) and output:
                        logger.info(f"Replicate prediction succeeded, got output URL: {output[0]}")
                        return output[0]
                    logger.error("Replicate succeeded but no output URL")
                    raise GenericError("Replicate succeeded but no output URL")
                if time.time() - start > REPLICATE_POLL_TIMEOUT_S:
                    logger.error("Replicate polling timeout")
                    raise GenericError("Replicate polling timeout")
                await _asleep(REPLICATE_POLL_INTERVAL_MS / 1000.0)
    except httpx.HTTPError as e:
        logger.error(f"Replicate request error: {str(e)}")
        raise GenericError(f"Replicate request error: {e}")
