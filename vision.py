"""
vision.py - Alt-text generation through an AI vision backend.

Two interchangeable backends are supported: a local Ollama server and the
Gemini REST API. The backend is chosen once with create_vision_service() and
passed to the pipeline. Every request is bounded by a timeout; HTTP 429
responses are retried with a growing delay, other failures are not.
"""
import logging
import re
import time

import requests

import config
from errors import ExternalServiceError, RateLimitError
from models import AltTextEntry

logger = logging.getLogger(__name__)

PROMPT = (
    "Describe this image for a visually impaired user. Provide a concise but "
    "descriptive alt-text (1-2 sentences) that captures the essential visual "
    "information. Focus on the key elements, their arrangement, and any text "
    "visible in the image."
)
PROMPT_WITH_CONTEXT = (
    "Describe this image for a visually impaired user. Context: {context}. "
    "Provide a concise but descriptive alt-text (1-2 sentences) that captures "
    "the essential visual information."
)

_LEADING_PHRASE = re.compile(
    r"^(This image shows|The image shows|This is an image of|This depicts|The picture shows)\s*",
    re.IGNORECASE,
)
_LEADING_LABEL = re.compile(
    r"^(Here is|Here's)\s*(a|an|the)?\s*(description|alt-text|alt text):\s*",
    re.IGNORECASE,
)


def build_prompt(context: str = None) -> str:
    if context:
        return PROMPT_WITH_CONTEXT.format(context=context)
    return PROMPT


def clean_alt_text(text: str) -> str:
    """Strip boilerplate lead-ins, capitalise, and end with punctuation."""
    cleaned = _LEADING_PHRASE.sub("", text.strip())
    cleaned = _LEADING_LABEL.sub("", cleaned).strip()
    if cleaned:
        cleaned = cleaned[0].upper() + cleaned[1:]
        if cleaned[-1] not in ".!?":
            cleaned += "."
    return cleaned


class VisionService:
    """Base class for vision backends."""

    name = "base"

    def __init__(self, timeout: float = None, max_retries: int = None,
                 backoff_seconds: float = None, sleep=time.sleep):
        self.timeout = config.VISION_TIMEOUT_SECONDS if timeout is None else timeout
        self.max_retries = config.VISION_MAX_RETRIES if max_retries is None else max_retries
        self.backoff_seconds = (config.VISION_RATE_LIMIT_BACKOFF_SECONDS
                                if backoff_seconds is None else backoff_seconds)
        self._sleep = sleep

    def check_connection(self) -> bool:
        raise NotImplementedError

    def is_model_available(self) -> bool:
        raise NotImplementedError

    def _describe(self, image_base64: str, prompt: str, mime_type: str) -> str:
        raise NotImplementedError

    def generate_alt_text(self, image_base64: str, context: str = None,
                          mime_type: str = "image/png") -> str:
        """Describe one image. Raises ExternalServiceError on failure."""
        prompt = build_prompt(context)
        last_error = None
        for attempt in range(1, self.max_retries + 1):
            try:
                return clean_alt_text(self._describe(image_base64, prompt, mime_type))
            except RateLimitError as e:
                last_error = e
                if attempt == self.max_retries:
                    break
                wait = attempt * self.backoff_seconds
                logger.warning("%s rate limited (attempt %d/%d), waiting %.0fs",
                               self.name, attempt, self.max_retries, wait)
                self._sleep(wait)
        raise ExternalServiceError(
            f"{self.name}: rate limit exceeded after {self.max_retries} attempts"
        ) from last_error

    def generate_batch_alt_text(self, images: list) -> list:
        """Describe several images; failures become the unavailable sentinel.

        ``images`` holds dicts with ``id``, ``base64`` and optional ``context``
        and ``mime_type`` keys.
        """
        results = []
        for image in images:
            try:
                alt_text = self.generate_alt_text(
                    image["base64"], image.get("context"),
                    image.get("mime_type", "image/png"),
                )
            except ExternalServiceError as e:
                logger.error("Failed to generate alt-text for image %s: %s", image["id"], e)
                alt_text = config.ALT_TEXT_UNAVAILABLE
            results.append(AltTextEntry(id=image["id"], alt_text=alt_text))
        return results

    def _post(self, url: str, **kwargs) -> dict:
        try:
            response = requests.post(url, timeout=self.timeout, **kwargs)
        except requests.Timeout as e:
            raise ExternalServiceError(f"{self.name}: request timed out") from e
        except requests.RequestException as e:
            raise ExternalServiceError(f"{self.name}: {e}") from e
        if response.status_code == 429:
            raise RateLimitError(f"{self.name}: rate limited (HTTP 429)")
        if response.status_code >= 400:
            raise ExternalServiceError(
                f"{self.name}: HTTP {response.status_code}: {response.text[:200]}"
            )
        try:
            body = response.json()
        except ValueError as e:
            raise ExternalServiceError(f"{self.name}: invalid JSON response") from e
        if not isinstance(body, dict):
            raise ExternalServiceError(
                f"{self.name}: expected a JSON object, got {type(body).__name__}"
            )
        return body


class OllamaVisionService(VisionService):
    """Local Ollama server running a multimodal model (llava by default)."""

    name = "ollama"

    def __init__(self, host: str = None, model: str = None, **kwargs):
        super().__init__(**kwargs)
        self.host = (host or config.OLLAMA_HOST).rstrip("/")
        self.model = model or config.OLLAMA_MODEL

    def _list_models(self) -> list:
        response = requests.get(f"{self.host}/api/tags", timeout=self.timeout)
        response.raise_for_status()
        body = response.json()
        models = body.get("models") if isinstance(body, dict) else None
        return [m.get("name", "") for m in models or [] if isinstance(m, dict)]

    def check_connection(self) -> bool:
        try:
            self._list_models()
            return True
        except (requests.RequestException, ValueError):
            return False

    def is_model_available(self) -> bool:
        try:
            return any(name.startswith(self.model) for name in self._list_models())
        except (requests.RequestException, ValueError):
            return False

    def _describe(self, image_base64: str, prompt: str, mime_type: str) -> str:
        body = self._post(f"{self.host}/api/generate", json={
            "model": self.model,
            "prompt": prompt,
            "images": [image_base64],
            "stream": False,
            "options": {
                "temperature": config.VISION_TEMPERATURE,
                "num_predict": config.VISION_MAX_TOKENS,
            },
        })
        text = body.get("response")
        if not isinstance(text, str) or not text.strip():
            raise ExternalServiceError("ollama: empty response")
        return text


class GeminiVisionService(VisionService):
    """Google Gemini generateContent REST endpoint."""

    name = "gemini"

    def __init__(self, api_key: str = None, model: str = None, **kwargs):
        super().__init__(**kwargs)
        self.api_key = config.GEMINI_API_KEY if api_key is None else api_key
        self.model = model or config.GEMINI_MODEL

    def check_connection(self) -> bool:
        return bool(self.api_key) and self.api_key != "PASTE_YOUR_KEY_HERE"

    def is_model_available(self) -> bool:
        return self.check_connection()

    def _describe(self, image_base64: str, prompt: str, mime_type: str) -> str:
        if not self.check_connection():
            raise ExternalServiceError("gemini: GEMINI_API_KEY is not set")
        body = self._post(
            f"{config.GEMINI_API_URL}/{self.model}:generateContent",
            params={"key": self.api_key},
            json={
                "contents": [{
                    "parts": [
                        {"text": prompt},
                        {"inline_data": {"mime_type": mime_type, "data": image_base64}},
                    ],
                }],
                "generationConfig": {
                    "temperature": config.VISION_TEMPERATURE,
                    "maxOutputTokens": config.VISION_MAX_TOKENS,
                },
            },
        )
        try:
            parts = body["candidates"][0]["content"]["parts"]
            text = "".join(p.get("text") or "" for p in parts)
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            raise ExternalServiceError("gemini: response has no candidate text") from e
        if not text.strip():
            raise ExternalServiceError("gemini: empty response")
        return text


def select_provider(provider: str = None, gemini_api_key: str = None) -> str:
    """Explicit provider wins; otherwise Gemini when a key is configured."""
    provider = (config.VISION_PROVIDER if provider is None else provider).strip().lower()
    if provider in ("ollama", "gemini"):
        return provider
    if provider:
        logger.warning("Unknown VISION_PROVIDER %r, auto-detecting", provider)
    key = config.GEMINI_API_KEY if gemini_api_key is None else gemini_api_key
    return "gemini" if key else "ollama"


def create_vision_service(provider: str = None) -> VisionService:
    """Build the configured backend. Call once at startup."""
    chosen = select_provider(provider)
    logger.info("Using %s vision backend", chosen)
    if chosen == "gemini":
        return GeminiVisionService()
    return OllamaVisionService()
