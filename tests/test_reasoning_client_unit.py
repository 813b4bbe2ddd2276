from types import SimpleNamespace

import httpx
import openai
import pytest

from src.domain.errors import AuthError, EncodingError, FormatError, TransportError
from src.research.reasoning_client import ReasoningClient, parse_decision_payload

MESSAGES = [{"role": "system", "content": "sys"}, {"role": "user", "content": "ctx"}]
_REQUEST = httpx.Request("POST", "https://api.deepseek.com/chat/completions")


class FakeCompletions:
    def __init__(self, content=None, error=None, no_choices=False):
        self.content = content
        self.error = error
        self.no_choices = no_choices
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        if self.no_choices:
            return SimpleNamespace(choices=[])
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _client(content=None, error=None, api_key="sk-test", no_choices=False):
    completions = FakeCompletions(content=content, error=error, no_choices=no_choices)
    fake = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return ReasoningClient(api_key, client=fake), completions


def test_request_decision_parses_nested_trading_decision():
    body = (
        '{"stage_analysis": "launch", "reasoning": "breakout", '
        '"trading_decision": {"action": "BUY", "confidence": "80%", "leverage": "50", '
        '"stop_loss": "2900", "profit_target": "3100"}}'
    )
    client, completions = _client(content=body)
    raw = client.request_decision(MESSAGES)
    assert raw.action == "BUY"
    assert raw.confidence == "80%"
    assert raw.stop_loss == "2900"
    assert raw.narrative()["reasoning"] == "breakout"

    kwargs = completions.calls[0]
    assert kwargs["model"] == "deepseek-chat"
    assert kwargs["response_format"] == {"type": "json_object"}
    assert kwargs["temperature"] == 1.1
    assert kwargs["messages"] == MESSAGES


def test_markdown_fences_are_stripped():
    client, _ = _client(content='```json\n{"action": "HOLD"}\n```')
    assert client.request_decision(MESSAGES).action == "HOLD"


@pytest.mark.parametrize("content", ["", "   ", None])
def test_empty_reply_is_a_format_error(content):
    client, _ = _client(content=content)
    with pytest.raises(FormatError, match="empty"):
        client.request_decision(MESSAGES)


def test_non_json_reply_is_a_format_error():
    client, _ = _client(content="I think you should buy.")
    with pytest.raises(FormatError, match="non-JSON"):
        client.request_decision(MESSAGES)


def test_json_array_is_a_format_error():
    with pytest.raises(FormatError, match="unexpected JSON type"):
        parse_decision_payload("[1, 2]")


@pytest.mark.parametrize("key", ["", "   ", None])
def test_empty_key_fails_before_any_request(key):
    client, completions = _client(content="{}", api_key=key)
    with pytest.raises(AuthError):
        client.request_decision(MESSAGES)
    assert completions.calls == []


def test_non_ascii_key_is_an_encoding_error():
    client, completions = _client(content="{}", api_key="sk-ключ")
    with pytest.raises(EncodingError):
        client.request_decision(MESSAGES)
    assert completions.calls == []


def test_authentication_failure_maps_to_auth_error():
    err = openai.AuthenticationError(
        message="invalid key", response=httpx.Response(401, request=_REQUEST), body=None
    )
    client, _ = _client(error=err)
    with pytest.raises(AuthError, match="401"):
        client.request_decision(MESSAGES)


def test_server_error_maps_to_transport_error():
    err = openai.InternalServerError(message="boom", response=httpx.Response(503, request=_REQUEST), body=None)
    client, _ = _client(error=err)
    with pytest.raises(TransportError, match="503"):
        client.request_decision(MESSAGES)


def test_timeout_maps_to_transport_error():
    client, _ = _client(error=openai.APITimeoutError(request=_REQUEST))
    with pytest.raises(TransportError):
        client.request_decision(MESSAGES)


def test_from_config_reads_ai_section_and_key():
    cfg = {
        "ai": {"model": "deepseek-reasoner", "temperature": 0.7, "max_tokens": 1000},
        "credentials": {"deepseek_api_key": "sk-abc"},
    }
    client = ReasoningClient.from_config(cfg)
    assert client.model == "deepseek-reasoner"
    assert client.temperature == 0.7
    assert client.max_tokens == 1000
    assert client.api_key == "sk-abc"


def test_test_connection_returns_content():
    client, completions = _client(content='{"message": "OK"}')
    assert client.test_connection() == '{"message": "OK"}'
    assert completions.calls[0]["response_format"] == {"type": "json_object"}


def test_reply_without_choices_is_a_format_error():
    client, _ = _client(no_choices=True)
    with pytest.raises(FormatError, match="no choices"):
        client.request_decision(MESSAGES)


def test_other_sdk_errors_map_to_transport_error():
    client, _ = _client(error=openai.OpenAIError("stream interrupted"))
    with pytest.raises(TransportError, match="stream interrupted"):
        client.request_decision(MESSAGES)
