from __future__ import annotations

import base64
import time

import httpx
import pytest
from openai import (
    APIConnectionError,
    APITimeoutError,
    AuthenticationError,
    RateLimitError,
)
from types import SimpleNamespace

from wastewatch.config import Settings
from wastewatch.services.classifier import ClassifierGateway
from wastewatch.services.points import Label
from tests.utils.fakes import PNG_BYTES, fake_openai_client, fake_openai_response

_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def _settings(**overrides) -> Settings:
    values = {
        "classifier_backoff_base": 0.0,
        "classifier_max_attempts": 3,
        "classifier_timeout_seconds": 5.0,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


class _Scripted:
    """Raises or returns the queued outcomes in order."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls: list[dict] = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return fake_openai_response(outcome)


def _gateway(scripted: _Scripted, **overrides) -> ClassifierGateway:
    return ClassifierGateway(_settings(**overrides), client=fake_openai_client(scripted.create))


@pytest.mark.asyncio
async def test_classify_plastic():
    scripted = _Scripted("Plastic")
    result = await _gateway(scripted).classify(PNG_BYTES, "image/png")
    assert result.label is Label.PLASTIC
    assert result.annotation == "♻️"
    assert result.raw_text == "Plastic"
    assert not result.degraded


@pytest.mark.asyncio
async def test_classify_sends_jpeg_data_url_and_keeps_original():
    original = bytes(PNG_BYTES)
    scripted = _Scripted("biodegradable")
    await _gateway(scripted).classify(PNG_BYTES, "image/png")

    call = scripted.calls[0]
    assert call["timeout"] == 5.0
    url = call["messages"][1]["content"][1]["image_url"]["url"]
    prefix = "data:image/jpeg;base64,"
    assert url.startswith(prefix)
    assert base64.b64decode(url[len(prefix):])[:2] == b"\xff\xd8"
    assert PNG_BYTES == original


@pytest.mark.asyncio
async def test_classify_retries_transport_errors():
    scripted = _Scripted(
        APIConnectionError(request=_REQUEST),
        RateLimitError(
            "slow down", response=httpx.Response(429, request=_REQUEST), body=None
        ),
        "biodegradable",
    )
    result = await _gateway(scripted).classify(PNG_BYTES, "image/png")
    assert result.label is Label.BIODEGRADABLE
    assert result.annotation == "🌿"
    assert len(scripted.calls) == 3


@pytest.mark.asyncio
async def test_classify_degrades_after_exhausting_attempts():
    scripted = _Scripted(*[APITimeoutError(request=_REQUEST) for _ in range(3)])
    result = await _gateway(scripted).classify(PNG_BYTES, "image/png")
    assert result.label is Label.UNKNOWN
    assert result.annotation == ""
    assert result.degraded
    assert result.failure_reason == "APITimeoutError"
    assert len(scripted.calls) == 3


@pytest.mark.asyncio
async def test_classify_does_not_retry_auth_errors():
    scripted = _Scripted(
        AuthenticationError(
            "bad key", response=httpx.Response(401, request=_REQUEST), body=None
        ),
        "plastic",
    )
    result = await _gateway(scripted).classify(PNG_BYTES, "image/png")
    assert result.label is Label.UNKNOWN
    assert result.failure_reason == "AuthenticationError"
    assert len(scripted.calls) == 1


@pytest.mark.asyncio
async def test_classify_unmapped_answer_is_unknown():
    scripted = _Scripted("It is a glass jar")
    result = await _gateway(scripted).classify(PNG_BYTES, "image/png")
    assert result.label is Label.UNKNOWN
    assert not result.degraded
    assert result.raw_text == "It is a glass jar"


@pytest.mark.asyncio
async def test_classify_empty_choices_degrades():
    def _create(**kwargs):
        return SimpleNamespace(choices=[])

    gateway = ClassifierGateway(_settings(), client=fake_openai_client(_create))
    result = await gateway.classify(PNG_BYTES, "image/png")
    assert result.label is Label.UNKNOWN
    assert result.failure_reason == "ValueError"


@pytest.mark.asyncio
async def test_classify_undecodable_image_skips_call():
    scripted = _Scripted("plastic")
    result = await _gateway(scripted).classify(b"not an image", "image/png")
    assert result.failure_reason == "undecodable_image"
    assert scripted.calls == []


@pytest.mark.asyncio
async def test_classify_without_api_key_degrades():
    gateway = ClassifierGateway(_settings(openai_api_key=None))
    result = await gateway.classify(PNG_BYTES, "image/png")
    assert result.label is Label.UNKNOWN
    assert result.failure_reason == "RuntimeError"


@pytest.mark.asyncio
async def test_classify_bounds_hanging_calls():
    def _create(**kwargs):
        time.sleep(1.5)
        return fake_openai_response("plastic")

    gateway = ClassifierGateway(
        _settings(classifier_timeout_seconds=0.05, classifier_max_attempts=1),
        client=fake_openai_client(_create),
    )
    start = time.perf_counter()
    result = await gateway.classify(PNG_BYTES, "image/png")
    assert time.perf_counter() - start < 1.4
    assert result.failure_reason == "TimeoutError"


def test_backoff_is_exponential_and_capped():
    gateway = ClassifierGateway(
        _settings(classifier_backoff_base=0.5, classifier_backoff_max=1.5)
    )
    assert [gateway._backoff(n) for n in (1, 2, 3, 4)] == [0.5, 1.0, 1.5, 1.5]


def test_client_lazy_init(monkeypatch):
    calls = 0

    class _FakeOpenAI:
        def __init__(self, **kwargs):
            nonlocal calls
            calls += 1
            assert kwargs["max_retries"] == 0

    monkeypatch.setattr("wastewatch.services.classifier.OpenAI", _FakeOpenAI)
    gateway = ClassifierGateway(_settings(openai_api_key="key"))
    first = gateway._get_client()
    assert gateway._get_client() is first
    gateway.close()
    assert gateway._get_client() is not first
    assert calls == 2
