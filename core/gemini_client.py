# core/gemini_client.py
import google.generativeai as genai
from google.api_core import exceptions as google_exceptions
from google.generativeai.types import GenerationConfig, HarmCategory, HarmBlockThreshold
from core.config import settings, logger
from typing import List, Dict, Any, Tuple, Optional, Union
import time
import asyncio

# Plain replies (chat answers, keyword lists)
DEFAULT_GENERATION_CONFIG = GenerationConfig(
    # temperature=0.7,
)

# File analysis: low temperature, reply forced to a JSON document
JSON_GENERATION_CONFIG = GenerationConfig(
    temperature=0.2,
    response_mime_type="application/json",
)

# Safety settings - adjust as needed, be cautious with NONE
DEFAULT_SAFETY_SETTINGS = {
    HarmCategory.HARM_CATEGORY_HARASSMENT: HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
    HarmCategory.HARM_CATEGORY_HATE_SPEECH: HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
    HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT: HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
    HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT: HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
}

# Requests the API rejects outright; retrying them only burns quota
NON_RETRYABLE_ERRORS = (
    google_exceptions.InvalidArgument,
    google_exceptions.PermissionDenied,
    google_exceptions.Unauthenticated,
)

# A prompt is either plain text or a list of parts: strings and inline blobs
# of the form {"mime_type": ..., "data": bytes}.
Contents = Union[str, List[Union[str, Dict[str, Any]]]]


def inline_part(data: bytes, mime_type: str) -> Dict[str, Any]:
    """Wraps raw file bytes as an inline blob part."""
    return {"mime_type": mime_type, "data": data}


def _usage_to_dict(usage_metadata) -> Dict[str, Any]:
    if not usage_metadata:
        return {}
    return {
        "prompt_tokens": getattr(usage_metadata, "prompt_token_count", None),
        "output_tokens": getattr(usage_metadata, "candidates_token_count", None),
        "total_tokens": getattr(usage_metadata, "total_token_count", None),
    }


class GeminiClient:
    """
    Async wrapper around the Gemini 'flash' and 'pro' models.

    Every call returns `(text, info)`. On failure `text` is None and
    `info["error"]` says why; callers never see SDK exceptions.
    """

    def __init__(self, api_key: str | None = settings.GEMINI_API_KEY):
        self.configured = False
        self.models: Dict[str, Any] = {}

        if not api_key or api_key == "YOUR_GEMINI_API_KEY_HERE":
            logger.warning("GEMINI_API_KEY not configured. GeminiClient will not function.")
            return

        try:
            genai.configure(api_key=api_key)
            self.models = {
                "flash": genai.GenerativeModel(settings.GEMINI_FLASH_MODEL),
                "pro": genai.GenerativeModel(settings.GEMINI_PRO_MODEL),
            }
            self.configured = True
            logger.info(f"Gemini Client configured (flash={settings.GEMINI_FLASH_MODEL}, pro={settings.GEMINI_PRO_MODEL}).")
        except Exception as e:
            logger.error(f"Failed to configure Gemini Client: {e}", exc_info=True)
            self.configured = False

    @property
    def flash_model(self):
        return self.models.get("flash")

    @flash_model.setter
    def flash_model(self, model):
        self.models["flash"] = model

    @property
    def pro_model(self):
        return self.models.get("pro")

    @pro_model.setter
    def pro_model(self, model):
        self.models["pro"] = model

    def _get_model(self, model_type: str = "flash"):
        if not self.configured:
            raise RuntimeError("Gemini client not configured.")
        model = self.models.get(model_type)
        if model is None:
            logger.error(f"Requested Gemini model type '{model_type}' is not available.")
            raise ValueError(f"Model type '{model_type}' unavailable.")
        return model

    async def _generate_with_retry(self, model, contents: Contents, generation_config: Optional[GenerationConfig] = None, safety_settings: Optional[dict] = None, retries: int | None = None, delay: float | None = None) -> Tuple[str | None, Dict[str, Any]]:
        """Calls the model, retrying transient failures with a linear backoff."""
        retries = settings.GEMINI_RETRIES if retries is None else max(1, retries)
        delay = settings.GEMINI_RETRY_DELAY if delay is None else delay
        gen_config = generation_config or DEFAULT_GENERATION_CONFIG
        safety = safety_settings or DEFAULT_SAFETY_SETTINGS
        last_exception = None

        for attempt in range(retries):
            try:
                response = await model.generate_content_async(contents, generation_config=gen_config, safety_settings=safety)
            except NON_RETRYABLE_ERRORS as e:
                logger.error(f"Gemini rejected the request: {e}")
                return None, {"error": str(e)}
            except Exception as e:
                logger.warning(f"Gemini API call failed (attempt {attempt + 1}/{retries}): {e}")
                last_exception = e
                if attempt + 1 < retries:
                    await asyncio.sleep(delay * (attempt + 1))
                continue

            # The prompt itself was blocked
            if not response.candidates:
                block_reason = response.prompt_feedback.block_reason.name if response.prompt_feedback else "Unknown"
                logger.warning(f"Gemini response blocked. Reason: {block_reason}")
                return None, {"error": f"Content blocked by safety filter: {block_reason}"}
            try:
                text = response.text
            except ValueError as e:
                # Candidate stopped without any text part (e.g. finish reason SAFETY)
                logger.warning(f"Gemini returned no text: {e}")
                return None, {"error": f"Model returned no text: {e}"}
            return text, _usage_to_dict(getattr(response, "usage_metadata", None))

        logger.error(f"Gemini API call failed after {retries} attempts: {last_exception}")
        return None, {"error": str(last_exception)}

    async def generate_text(self, contents: Contents, model_type: str = "flash", **kwargs) -> Tuple[str | None, Dict[str, Any]]:
        """Generate text from a prompt (optionally with inline file parts) using the given model type."""
        try:
            model = self._get_model(model_type)
        except (RuntimeError, ValueError) as e:
            logger.error(f"Cannot generate text: {e}")
            return None, {"error": str(e)}
        part_count = 1 if isinstance(contents, str) else len(contents)
        start_time = time.monotonic()
        result, usage = await self._generate_with_retry(model, contents, **kwargs)
        duration = time.monotonic() - start_time
        logger.info(f"Gemini {model_type.upper()} call ({part_count} part(s)) took {duration:.2f}s. Output length: {len(result) if result else 0}, usage: {usage}")
        return result, usage

    async def generate_json(self, contents: Contents, model_type: str = "flash", **kwargs) -> Tuple[str | None, Dict[str, Any]]:
        """Like generate_text, but asks the model for a raw JSON reply."""
        return await self.generate_text(contents, model_type=model_type, generation_config=JSON_GENERATION_CONFIG, **kwargs)


# Instantiate the client for easy import across services
gemini_client = GeminiClient()
