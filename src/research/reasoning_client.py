import json
import logging
from typing import Any

from openai import (
    APIConnectionError,
    APIStatusError,
    AuthenticationError,
    OpenAI,
    OpenAIError,
    PermissionDeniedError,
)

from src.domain.errors import AuthError, EncodingError, FormatError, TransportError
from src.domain.models import RawDecision

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.deepseek.com"
DEFAULT_MODEL = "deepseek-chat"
REASONING_TIMEOUT_SECONDS = 60
REASONING_MAX_RETRIES = 0


def check_api_key(api_key: str | None) -> str:
    """Strip the key and reject values that can never authenticate."""
    clean = (api_key or "").strip()
    if not clean:
        raise AuthError("Reasoning API key is empty")
    if not clean.isascii():
        raise EncodingError("Reasoning API key contains non-ASCII characters")
    return clean


def strip_code_fences(text: str) -> str:
    return text.replace("```json", "").replace("```", "").strip()


def parse_decision_payload(text: str) -> dict[str, Any]:
    """Parse the service reply as a JSON object, tolerating markdown fences."""
    try:
        parsed = json.loads(strip_code_fences(text))
    except json.JSONDecodeError as exc:
        raise FormatError(f"Reasoning service returned non-JSON: {text[:200]!r}") from exc
    if not isinstance(parsed, dict):
        raise FormatError(f"Reasoning service returned unexpected JSON type: {type(parsed).__name__}")
    return parsed


class ReasoningClient:
    def __init__(
        self,
        api_key: str | None,
        *,
        model: str = DEFAULT_MODEL,
        base_url: str = DEFAULT_BASE_URL,
        temperature: float = 1.1,
        max_tokens: int = 4096,
        timeout_seconds: float = REASONING_TIMEOUT_SECONDS,
        client: Any = None,
    ):
        """
        DeepSeek chat-completions client (OpenAI-compatible API).

        The key is validated lazily so a blank key surfaces as a logged cycle error
        instead of crashing the trader at startup.
        """
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout_seconds = timeout_seconds
        self._client = client

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "ReasoningClient":
        ai = config.get("ai", {}) or {}
        creds = config.get("credentials", {}) or {}
        return cls(
            creds.get("deepseek_api_key"),
            model=str(ai.get("model") or DEFAULT_MODEL),
            base_url=str(ai.get("base_url") or DEFAULT_BASE_URL),
            temperature=float(ai.get("temperature", 1.1)),
            max_tokens=int(ai.get("max_tokens", 4096)),
            timeout_seconds=float(ai.get("timeout_seconds", REASONING_TIMEOUT_SECONDS)),
        )

    def _get_client(self) -> Any:
        key = check_api_key(self.api_key)
        if self._client is None:
            self._client = OpenAI(
                api_key=key,
                base_url=self.base_url,
                timeout=self.timeout_seconds,
                max_retries=REASONING_MAX_RETRIES,
            )
        return self._client

    def _safe_completion(self, messages: list[dict[str, str]], *, json_mode: bool = True) -> str:
        """
        Wrapper for chat completions with error mapping.
        Returns the response content or raises a TradingError subclass.
        """
        client = self._get_client()
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "stream": False,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = client.chat.completions.create(**kwargs)
        except (AuthenticationError, PermissionDeniedError) as e:
            raise AuthError(f"Reasoning API rejected the key: {e.status_code}") from e
        except APIStatusError as e:
            raise TransportError(f"Reasoning API error: {e.status_code} - {str(e)[:200]}") from e
        except APIConnectionError as e:
            raise TransportError(f"Failed to reach reasoning API: {e}") from e
        except OpenAIError as e:
            raise TransportError(f"Reasoning API error: {type(e).__name__}: {e}") from e

        choices = getattr(response, "choices", None) or []
        if not choices:
            raise FormatError("Reasoning service returned no choices")
        return (choices[0].message.content or "").strip()

    def request_decision(self, messages: list[dict[str, str]]) -> RawDecision:
        raw = self._safe_completion(messages)
        if not raw:
            raise FormatError("Reasoning service returned an empty response")
        payload = parse_decision_payload(raw)
        logger.debug("Reasoning payload keys: %s", sorted(payload))
        return RawDecision.from_payload(payload)

    def test_connection(self) -> str:
        content = self._safe_completion(
            [{"role": "user", "content": "Please respond with a JSON object containing the message 'OK'."}]
        )
        return content or "(empty response)"
