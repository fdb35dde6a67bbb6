import httpx
import pytest
from unittest.mock import MagicMock
from openai import APIConnectionError, APIStatusError, RateLimitError

from lib.config import Settings
from lib.error_handler import AppError
from lib.openai_client import GatewayClient

GATEWAY_URL = "https://ai.gateway.example/v1/chat/completions"

def status_error(cls, status):
    request = httpx.Request("POST", GATEWAY_URL)
    response = httpx.Response(status, request=request)
    return cls(f"status {status}", response=response, body=None)

def completion(content):
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = content
    return response


def test_complete_returns_first_choice():
    client = MagicMock()
    client.chat.completions.create.return_value = completion("Olá!")
    gateway = GatewayClient(client, 'google/gemini-2.5-flash')
    messages = [{"role": "user", "content": "oi"}]

    assert gateway.complete(messages) == "Olá!"
    client.chat.completions.create.assert_called_once_with(
        model='google/gemini-2.5-flash',
        messages=messages,
        stream=False
    )

def test_complete_without_choices_returns_none():
    client = MagicMock()
    response = MagicMock()
    response.choices = []
    client.chat.completions.create.return_value = response

    assert GatewayClient(client, 'm').complete([]) is None

def test_complete_with_non_string_content_returns_none():
    client = MagicMock()
    client.chat.completions.create.return_value = completion(None)

    assert GatewayClient(client, 'm').complete([]) is None

@pytest.mark.parametrize('cls, status', [
    (RateLimitError, 429),
    (APIStatusError, 402),
    (APIStatusError, 503),
])
def test_status_errors_keep_status_code(cls, status):
    client = MagicMock()
    client.chat.completions.create.side_effect = status_error(cls, status)

    with pytest.raises(AppError) as exc_info:
        GatewayClient(client, 'm').complete([])
    assert exc_info.value.status_code == status

def test_connection_error_is_bad_gateway():
    client = MagicMock()
    client.chat.completions.create.side_effect = APIConnectionError(request=httpx.Request("POST", GATEWAY_URL))

    with pytest.raises(AppError) as exc_info:
        GatewayClient(client, 'm').complete([])
    assert exc_info.value.status_code == 502

def test_unconfigured_gateway():
    gateway = GatewayClient.from_settings(Settings(ai_gateway_api_key=''))

    assert not gateway.configured
    with pytest.raises(AppError):
        gateway.complete([])

def test_from_settings_disables_retries():
    gateway = GatewayClient.from_settings(Settings(
        ai_gateway_api_key='key', ai_gateway_url='https://ai.gateway.example/v1', ai_model='test-model'
    ))

    assert gateway.configured
    assert gateway.model == 'test-model'
    assert gateway.client.max_retries == 0
    assert str(gateway.client.base_url).startswith('https://ai.gateway.example/v1')
