"""HTTP client for the Ark (OpenAI-compatible) chat and image generation API."""

import json
import logging
from typing import Any, Dict, List, Optional

import requests
import tenacity

from ..config import (
    CHAT_TEMPERATURE,
    IMAGE_TIMEOUT_SECONDS,
    UPSTREAM_MAX_ATTEMPTS,
    VISION_TIMEOUT_SECONDS,
    Settings,
)
from ..errors import ConfigurationError, UpstreamError

logger = logging.getLogger(__name__)

AUTH_HINT = (
    "Try: ARK_AUTH_TYPE=direct or ARK_AUTH_TYPE=x-api-key in your .env file"
)


def clean_api_key(api_key: str) -> str:
    """Strip whitespace and line breaks that sneak in from copy-pasted keys."""
    return "".join(api_key.split())


def auth_headers(api_key: Optional[str], auth_type: str = "bearer") -> Dict[str, str]:
    """
    Build the authentication header for the configured auth style.

    Args:
        api_key: Raw API key
        auth_type: bearer (default), direct / api-key, or x-api-key

    Returns:
        Header dict to merge into the request headers
    """
    if not api_key:
        raise ConfigurationError(["ARK_API_KEY"])
    key = clean_api_key(api_key)
    if not key:
        raise ConfigurationError(["ARK_API_KEY"])

    if auth_type in ("direct", "api-key"):
        return {"Authorization": key}
    if auth_type == "x-api-key":
        return {"X-API-Key": key}
    return {"Authorization": f"Bearer {key}"}


def extract_message_text(data: Dict[str, Any]) -> str:
    """Read the assistant text from a chat completion response."""
    choices = data.get("choices") or []
    if not choices:
        return ""
    first = choices[0] or {}
    message = first.get("message") or {}
    content = message.get("content")
    if isinstance(content, list):
        # Some models return content parts instead of a plain string
        content = "".join(part.get("text", "") for part in content if isinstance(part, dict))
    return content or first.get("text") or ""


def _error_message(data: Any, fallback: str) -> str:
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return error["message"]
        if isinstance(error, str) and error:
            return error
    return fallback or "Upstream API error"


def _log_retry(retry_state: tenacity.RetryCallState) -> None:
    logger.warning(f"Retrying upstream call, attempt {retry_state.attempt_number}")


class ArkClient:
    """Thin wrapper over the upstream REST endpoints.

    All methods are blocking (``requests``); async callers run them in a
    worker thread.
    """

    def __init__(self, settings: Settings, session: Optional[requests.Session] = None):
        self.settings = settings
        self.session = session or requests.Session()

    def require(self, *fields: str) -> None:
        """Raise ConfigurationError naming every missing setting."""
        missing = self.settings.missing("api_key", "base_url", *fields)
        if missing:
            raise ConfigurationError(missing)

    @tenacity.retry(
        stop=tenacity.stop_after_attempt(UPSTREAM_MAX_ATTEMPTS),
        wait=tenacity.wait_exponential(multiplier=1, min=1, max=4),
        retry=tenacity.retry_if_exception_type(requests.ConnectionError),
        before_sleep=_log_retry,
        reraise=True,
    )
    def _send(self, path: str, payload: Dict[str, Any], timeout: float) -> requests.Response:
        headers = {"Content-Type": "application/json"}
        headers.update(auth_headers(self.settings.api_key, self.settings.auth_type))
        return self.session.post(
            f"{self.settings.base_url}{path}",
            headers=headers,
            json=payload,
            timeout=timeout,
        )

    def post(self, path: str, payload: Dict[str, Any], timeout: float) -> Dict[str, Any]:
        """
        POST a JSON payload and return the decoded JSON response.

        Raises:
            UpstreamError: Transport failure, timeout, non-2xx status or a
                body that is not JSON.
        """
        try:
            response = self._send(path, payload, timeout)
        except requests.Timeout as e:
            logger.error(f"Upstream timeout on {path}: {e}")
            raise UpstreamError(504, f"Upstream request timed out after {timeout}s") from e
        except requests.RequestException as e:
            logger.error(f"Upstream request error on {path}: {e}")
            raise UpstreamError(502, f"Upstream error: {e}") from e

        text = response.text
        logger.info(f"Upstream {path} status={response.status_code} length={len(text)}")

        try:
            data = json.loads(text)
        except ValueError:
            logger.error(f"Upstream returned non-JSON body: {text[:500]}")
            if not response.ok:
                raise UpstreamError(response.status_code, f"Ark API error: {text[:200]}", raw=text)
            raise UpstreamError(500, "Invalid JSON response from Ark API", raw=text)

        if not response.ok:
            hint = None
            if response.status_code == 401:
                logger.error(
                    f"401 Unauthorized - check ARK_API_KEY (auth type: {self.settings.auth_type})"
                )
                hint = AUTH_HINT
            message = _error_message(data, text)
            if response.status_code == 401:
                message = (
                    "Authentication failed: Invalid or missing API key. "
                    "Please check your ARK_API_KEY in .env file."
                )
            raise UpstreamError(response.status_code, message, raw=data, hint=hint)

        return data

    def chat_completion(
        self,
        messages: List[Dict[str, Any]],
        model: Optional[str] = None,
        temperature: float = CHAT_TEMPERATURE,
        timeout: float = VISION_TIMEOUT_SECONDS,
    ) -> Dict[str, Any]:
        """Call ``/chat/completions`` with the configured (or given) model."""
        if model:
            self.require()
        else:
            self.require("chat_model")
        payload = {
            "model": model or self.settings.chat_model,
            "messages": messages,
            "temperature": temperature,
        }
        return self.post("/chat/completions", payload, timeout)

    def generate_image(
        self,
        payload: Dict[str, Any],
        timeout: float = IMAGE_TIMEOUT_SECONDS,
    ) -> Dict[str, Any]:
        """Call ``/images/generations`` with a payload from the request adapter."""
        self.require()
        return self.post("/images/generations", payload, timeout)
