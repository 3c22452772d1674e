import base64
import mimetypes
from functools import lru_cache
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlparse

import openai
from openai import OpenAI

from ember.config import settings
from ember.errors import PermanentExtractionError, TransientExtractionError
from ember.logging import logger

# Status codes the service documents as safe to retry
RETRYABLE_STATUS = {408, 409, 429}


@lru_cache(maxsize=1)
def get_client() -> OpenAI:
    """
    Build the OpenAI client on first use.

    Client-side retries are disabled: the job runner owns retry and backoff.
    """
    api_key = settings.OPENAI_API_KEY.get_secret_value() if settings.OPENAI_API_KEY else None
    return OpenAI(api_key=api_key, max_retries=0, timeout=settings.OPENAI_TIMEOUT_SECONDS)


def classify_error(e: Exception) -> Exception:
    """Map an OpenAI SDK exception onto the pipeline's transient/permanent split."""
    if isinstance(e, openai.APIConnectionError):
        # Includes APITimeoutError
        return TransientExtractionError(f"Extraction service unreachable: {e}")
    if isinstance(e, openai.APIStatusError):
        if e.status_code in RETRYABLE_STATUS or e.status_code >= 500:
            return TransientExtractionError(f"Extraction service error {e.status_code}: {e}")
        return PermanentExtractionError(f"Extraction service rejected request ({e.status_code}): {e}")
    return e


def encode_image(image_path: str) -> str:
    """Encode image to base64 string."""
    with open(image_path, "rb") as image_file:
        return base64.b64encode(image_file.read()).decode("utf-8")


def to_model_image_url(url: str) -> str:
    """Inline locally stored screenshots as data URLs; pass remote URLs through."""
    parsed = urlparse(url)
    if parsed.scheme != "file":
        return url
    path = unquote(parsed.path)
    mime_type = mimetypes.guess_type(path)[0] or "image/jpeg"
    return f"data:{mime_type};base64,{encode_image(path)}"


def get_vision_completion(
    image_urls: list[str],
    prompt: str,
    system_prompt: str = "You are a helpful assistant.",
    model: Optional[str] = None,
) -> str:
    """
    Call the vision model once with every screenshot of a capture.
    Returns the content string.
    """
    content = [{"type": "text", "text": prompt}]
    for url in image_urls:
        content.append({
            "type": "image_url",
            "image_url": {"url": to_model_image_url(url), "detail": "high"},
        })

    try:
        response = get_client().chat.completions.create(
            model=model or settings.OPENAI_MODEL_VISION,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": content},
            ],
            response_format={"type": "json_object"},
            max_completion_tokens=settings.EXTRACTION_MAX_TOKENS,
        )
        return response.choices[0].message.content or ""
    except openai.OpenAIError as e:
        logger.error(f"OpenAI Vision API call failed: {e}")
        raise classify_error(e) from e


def get_chat_completion(
    prompt: str,
    system_prompt: str = "You are a helpful assistant.",
    json_mode: bool = False,
    model: Optional[str] = None,
) -> str:
    """
    Call OpenAI Chat model.
    """
    try:
        kwargs = {
            "model": model or settings.OPENAI_MODEL_EXTRACTION,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt}
            ],
            "max_completion_tokens": settings.EXTRACTION_MAX_TOKENS,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        response = get_client().chat.completions.create(**kwargs)
        return response.choices[0].message.content or ""
    except openai.OpenAIError as e:
        logger.error(f"OpenAI Chat API call failed: {e}")
        raise classify_error(e) from e
