import os
from unittest.mock import patch

import pytest

from src.utils.errors import ConfigurationError
from src.utils.llm_client import create_openai_client


@pytest.fixture
def mock_openai():
    with patch("src.utils.llm_client.OpenAI") as mock:
        yield mock


def test_create_client_without_key_raises(mock_openai):
    with patch.dict(os.environ, {}, clear=True):
        with pytest.raises(ConfigurationError) as excinfo:
            create_openai_client()
    assert excinfo.value.to_dict()["code"] == "configuration"
    mock_openai.assert_not_called()


def test_create_client_explicit_args(mock_openai):
    create_openai_client(
        api_key="sk-explicit",
        base_url="https://explicit.com",
        timeout=30.0,
        max_retries=5,
    )

    mock_openai.assert_called_once()
    call_kwargs = mock_openai.call_args.kwargs
    assert call_kwargs["api_key"] == "sk-explicit"
    assert call_kwargs["base_url"] == "https://explicit.com"
    assert call_kwargs["timeout"] == 30.0
    assert call_kwargs["max_retries"] == 5
    assert call_kwargs["default_headers"] is None


def test_openrouter_key_preferred_over_openai_key(mock_openai):
    env = {"OPENROUTER_API_KEY": "sk-or", "OPENAI_API_KEY": "sk-oa"}
    with patch.dict(os.environ, env, clear=True):
        create_openai_client(base_url="https://openrouter.ai/api/v1")

    assert mock_openai.call_args.kwargs["api_key"] == "sk-or"


def test_create_client_env_vars(mock_openai):
    env = {"OPENAI_API_KEY": "sk-env", "OPENAI_BASE_URL": "https://env.com"}
    with patch.dict(os.environ, env, clear=True):
        create_openai_client()

    call_kwargs = mock_openai.call_args.kwargs
    assert call_kwargs["api_key"] == "sk-env"
    assert call_kwargs["base_url"] == "https://env.com"


def test_attribution_headers(mock_openai):
    create_openai_client(api_key="sk-x", app_url="https://example.org", app_title="Canon")

    headers = mock_openai.call_args.kwargs["default_headers"]
    assert headers == {"HTTP-Referer": "https://example.org", "X-Title": "Canon"}
