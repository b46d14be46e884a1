"""Text generation backends.

``TextGenerator`` is the contract the agent core depends on. The only
production backend is Gemini's ``generateContent`` REST endpoint.
"""

import json
import logging
from typing import Any

import httpx

from gagent.errors import GeneratorCallError, GeneratorUnavailableError

logger = logging.getLogger(__name__)


class TextGenerator:
    """Protocol for text completion backends."""

    @property
    def name(self) -> str:
        return type(self).__name__

    def is_available(self) -> bool:
        """Return True when the backend is configured to accept calls."""
        raise NotImplementedError

    async def generate_text(self, prompt: str) -> str:
        """Return completion text for ``prompt``.

        Raises:
            GeneratorUnavailableError: backend not configured
            GeneratorCallError: request failed or reply had no text
        """
        raise NotImplementedError


class UnavailableTextGenerator(TextGenerator):
    """Backend used when no credentials are configured."""

    def is_available(self) -> bool:
        return False

    async def generate_text(self, prompt: str) -> str:
        raise GeneratorUnavailableError("Text generator is not configured")


class GeminiTextGenerator(TextGenerator):
    """Gemini REST backend."""

    def __init__(
        self,
        api_key: str | None,
        model: str = "gemini-2.5-pro",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        proxy_url: str | None = None,
        timeout: float = 60,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.proxy_url = proxy_url
        self.timeout = timeout
        self._transport = transport
        if not api_key:
            logger.warning("Gemini API key is not configured, text generation is disabled")

    @property
    def name(self) -> str:
        return f"gemini:{self.model}"

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    def is_available(self) -> bool:
        return bool(self.api_key)

    def _client(self) -> httpx.AsyncClient:
        kwargs: dict[str, Any] = {"timeout": self.timeout}
        if self._transport is not None:
            kwargs["transport"] = self._transport
        elif self.proxy_url:
            kwargs["proxy"] = self.proxy_url
        return httpx.AsyncClient(**kwargs)

    async def generate_text(self, prompt: str) -> str:
        if not self.is_available():
            raise GeneratorUnavailableError("Gemini API key is not configured")

        body = {"contents": [{"parts": [{"text": prompt}]}]}
        logger.debug(f"Gemini request: model={self.model}, prompt_chars={len(prompt)}")

        try:
            async with self._client() as client:
                response = await client.post(
                    self.endpoint,
                    params={"key": self.api_key},
                    json=body,
                )
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException as e:
            raise GeneratorCallError("Gemini request timed out", str(e)) from e
        except httpx.HTTPStatusError as e:
            raise GeneratorCallError(
                f"Gemini API returned HTTP {e.response.status_code}",
                _error_message(e.response),
            ) from e
        except httpx.HTTPError as e:
            raise GeneratorCallError("Gemini request failed", str(e)) from e
        except ValueError as e:
            raise GeneratorCallError("Gemini returned a non-JSON response", str(e)) from e

        if isinstance(data, dict) and data.get("error"):
            err = data["error"]
            message = err.get("message") if isinstance(err, dict) else str(err)
            raise GeneratorCallError("Gemini API error", message)

        text = _first_candidate_text(data)
        if text is None:
            raise GeneratorCallError("Invalid response structure from Gemini API", json.dumps(data)[:500])

        logger.debug(f"Gemini reply: {len(text)} chars")
        return text


def _first_candidate_text(data: Any) -> str | None:
    try:
        text = data["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        return None
    return text if isinstance(text, str) and text else None


def _error_message(response: httpx.Response) -> str:
    try:
        err = response.json().get("error", {})
        if isinstance(err, dict) and err.get("message"):
            return err["message"]
    except ValueError:
        pass
    return response.text[:500]


def extract_json_object(text: str) -> dict[str, Any] | None:
    """Return the first JSON object in a model reply.

    Fenced ```json blocks are tried first, then a scan for any decodable
    object starting at a brace.
    """
    if "```" in text:
        marker = "```json" if "```json" in text else "```"
        block = text.split(marker, 1)[1].split("```", 1)[0].strip()
        try:
            data = json.loads(block)
            if isinstance(data, dict):
                return data
        except ValueError:
            pass

    decoder = json.JSONDecoder()
    idx = 0
    while True:
        start = text.find("{", idx)
        if start == -1:
            return None
        try:
            data, _ = decoder.raw_decode(text[start:])
        except ValueError:
            idx = start + 1
            continue
        if isinstance(data, dict):
            return data
        idx = start + 1


def create_text_generator(settings: Any) -> TextGenerator:
    """Build the configured backend."""
    if not settings.gemini_api_key:
        return UnavailableTextGenerator()
    return GeminiTextGenerator(
        api_key=settings.gemini_api_key,
        model=settings.gemini_model,
        base_url=settings.gemini_base_url,
        proxy_url=settings.llm_proxy_url,
        timeout=settings.llm_timeout,
    )
