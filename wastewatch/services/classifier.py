"""Waste classification through the OpenAI vision API."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

import httpx
from openai import (
    APIConnectionError,
    APITimeoutError,
    InternalServerError,
    OpenAI,
    OpenAIError,
    RateLimitError,
)

from wastewatch.config import Settings
from wastewatch.metrics import classifier_retry_total
from wastewatch.services.images import ImageDecodeError, jpeg_data_url
from wastewatch.services.points import Label, annotation_for, normalize_label

logger = logging.getLogger(__name__)

_PROMPT = (
    "You sort household waste. Look at the photo and classify the main "
    "waste item. Answer with exactly one word: plastic, biodegradable or other."
)

# Errors worth another attempt: transport problems, throttling and 5xx.
RETRYABLE_ERRORS = (
    APITimeoutError,
    APIConnectionError,
    RateLimitError,
    InternalServerError,
    TimeoutError,
)


@dataclass(frozen=True)
class ClassificationResult:
    label: Label
    annotation: str = ""
    raw_text: str = ""
    failure_reason: str | None = None

    @property
    def degraded(self) -> bool:
        return self.failure_reason is not None

    @classmethod
    def unknown(cls, reason: str) -> "ClassificationResult":
        return cls(label=Label.UNKNOWN, annotation="", raw_text="", failure_reason=reason)


class ClassifierGateway:
    """Wraps the external classifier: encoding, timeout and retry policy.

    :meth:`classify` never raises for service problems. When every attempt
    fails it returns ``ClassificationResult.unknown`` carrying the reason.
    """

    def __init__(self, settings: Settings, client: OpenAI | None = None):
        self._settings = settings
        self._client = client
        self._http_client: httpx.Client | None = None

    def _get_client(self) -> OpenAI:
        """Lazily build and cache the OpenAI client."""
        if self._client is None:
            api_key = self._settings.openai_api_key
            if not api_key:
                raise RuntimeError("OPENAI_API_KEY is not set")
            mounts: dict[str, httpx.HTTPTransport] = {}
            proxy = self._settings.classifier_proxy
            if proxy:
                mounts["http://"] = httpx.HTTPTransport(proxy=proxy)
                mounts["https://"] = httpx.HTTPTransport(proxy=proxy)
            self._http_client = httpx.Client(mounts=mounts) if mounts else None
            # retries are driven by classify() so the backoff stays bounded
            self._client = OpenAI(
                api_key=api_key,
                http_client=self._http_client,
                max_retries=0,
            )
        return self._client

    def close(self) -> None:
        if self._http_client is not None:
            self._http_client.close()
        self._http_client = None
        self._client = None

    def _request(self, data_url: str) -> str:
        client = self._get_client()
        response = client.chat.completions.create(
            model=self._settings.classifier_model,
            messages=[
                {"role": "system", "content": _PROMPT},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": "Classify this waste."},
                        {"type": "image_url", "image_url": {"url": data_url}},
                    ],
                },
            ],
            max_tokens=16,
            timeout=self._settings.classifier_timeout_seconds,
        )
        try:
            return response.choices[0].message.content or ""
        except (IndexError, AttributeError, TypeError) as exc:
            raise ValueError("Malformed classifier response") from exc

    def _backoff(self, attempt: int) -> float:
        delay = self._settings.classifier_backoff_base * (2 ** (attempt - 1))
        return min(delay, self._settings.classifier_backoff_max)

    async def classify(self, image_bytes: bytes, mime_type: str) -> ClassificationResult:
        try:
            data_url = await asyncio.to_thread(
                jpeg_data_url, image_bytes, self._settings.classifier_max_side
            )
        except ImageDecodeError:
            return ClassificationResult.unknown("undecodable_image")

        attempts = max(1, self._settings.classifier_max_attempts)
        # hard ceiling in case the SDK ignores its own timeout
        ceiling = self._settings.classifier_timeout_seconds + 1.0
        for attempt in range(1, attempts + 1):
            try:
                text = await asyncio.wait_for(
                    asyncio.to_thread(self._request, data_url), timeout=ceiling
                )
            except RETRYABLE_ERRORS as exc:
                if attempt >= attempts:
                    return ClassificationResult.unknown(type(exc).__name__)
                delay = self._backoff(attempt)
                classifier_retry_total.inc()
                logger.info(
                    "Classifier attempt %d/%d failed (%s), retrying in %.2fs",
                    attempt,
                    attempts,
                    type(exc).__name__,
                    delay,
                )
                await asyncio.sleep(delay)
                continue
            except (OpenAIError, RuntimeError, ValueError) as exc:
                return ClassificationResult.unknown(type(exc).__name__)

            label = normalize_label(text)
            logger.debug("Classified %s upload as %s", mime_type, label.value)
            return ClassificationResult(
                label=label,
                annotation=annotation_for(label),
                raw_text=text.strip(),
            )
        return ClassificationResult.unknown("no_attempts")


__all__ = ["ClassificationResult", "ClassifierGateway", "RETRYABLE_ERRORS"]
