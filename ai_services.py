from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Optional, Protocol, Union

from openai import OpenAI

from csv_utils import parse_amount
from models import ALL_CATEGORIES, CATEGORIES, FALLBACK_CATEGORY


logger = logging.getLogger(__name__)

RECEIPT_PROMPT = """Extract the following from this receipt:
1. Total amount (just the number, e.g., "45.67")
2. Merchant/vendor name
3. Brief description of items purchased

Return ONLY a JSON object with these keys: amount, merchant, description.
Example: {"amount": "45.67", "merchant": "Starbucks", "description": "Coffee and pastry"}"""

RECEIPT_PLACEHOLDER = "Purchase"

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)
_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


class CompletionClient(Protocol):
    def complete(
        self,
        messages: list[dict[str, Any]],
        *,
        model: str,
        max_tokens: int,
        temperature: Optional[float] = None,
    ) -> str: ...


class OpenAICompletionClient:
    """Chat-completions client; the SDK client is created on first use."""

    def __init__(self, api_key: Optional[str]) -> None:
        self.api_key = api_key
        self._client: Optional[OpenAI] = None

    def _get_client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI(api_key=self.api_key)
        return self._client

    def complete(
        self,
        messages: list[dict[str, Any]],
        *,
        model: str,
        max_tokens: int,
        temperature: Optional[float] = None,
    ) -> str:
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_tokens": max_tokens,
        }
        if temperature is not None:
            kwargs["temperature"] = temperature
        response = self._get_client().chat.completions.create(**kwargs)
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""


@dataclass(frozen=True)
class Resolved:
    category: str
    source: str  # "manual" or "ai"


@dataclass(frozen=True)
class Fallback:
    reason: str
    category: str = FALLBACK_CATEGORY


CategoryResolution = Union[Resolved, Fallback]


class CategorizationService:
    def __init__(
        self, client: Optional[CompletionClient], model: str = "gpt-4o-mini"
    ) -> None:
        self.client = client
        self.model = model

    def resolve(
        self, description: str, manual_category: Optional[str] = None
    ) -> CategoryResolution:
        """Manual input wins; otherwise one completion call, ``Other`` on any miss."""
        if manual_category and manual_category.strip():
            if manual_category != ALL_CATEGORIES:
                return Resolved(category=manual_category, source="manual")

        if self.client is None:
            logger.warning("categorize_fallback: reason=no completion client")
            return Fallback(reason="no completion client")

        messages = [
            {
                "role": "system",
                "content": (
                    "You are an expense categorizer. Given an expense description, "
                    "return ONLY the most appropriate category from this list: "
                    f"{', '.join(CATEGORIES)}. Return nothing else - just the "
                    "category name exactly as written."
                ),
            },
            {"role": "user", "content": f'Categorize this expense: "{description}"'},
        ]
        try:
            raw = self.client.complete(
                messages, model=self.model, max_tokens=20, temperature=0
            )
        except Exception as exc:
            reason = f"{type(exc).__name__}: {exc}"
            logger.warning(f"categorize_fallback: reason={reason}")
            return Fallback(reason=reason)

        label = (raw or "").strip().strip("\"'").strip()
        if label in CATEGORIES:
            return Resolved(category=label, source="ai")
        reason = f"unrecognized label {label!r}"
        logger.warning(f"categorize_fallback: reason={reason}")
        return Fallback(reason=reason)


@dataclass(frozen=True)
class ReceiptData:
    amount_cents: int
    merchant: str
    description: str


class ReceiptExtractionError(RuntimeError):
    pass


def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", text).strip()


def _load_json_object(text: str) -> Optional[dict[str, Any]]:
    candidates = [text]
    match = _OBJECT_RE.search(text)
    if match and match.group(0) != text:
        candidates.append(match.group(0))
    for candidate in candidates:
        try:
            payload = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(payload, dict):
            return payload
    return None


def _receipt_amount_cents(value: Any) -> int:
    if value is None or isinstance(value, bool):
        return 0
    try:
        return parse_amount(str(value))
    except ValueError:
        return 0


def parse_receipt_content(content: str) -> ReceiptData:
    payload = _load_json_object(strip_code_fences(content or ""))
    if payload is None:
        logger.warning(f"receipt_parse_failed: content_length={len(content or '')}")
        payload = {}

    merchant = str(payload.get("merchant") or "").strip()
    items = str(payload.get("description") or "").strip()
    label = merchant or RECEIPT_PLACEHOLDER
    return ReceiptData(
        amount_cents=_receipt_amount_cents(payload.get("amount")),
        merchant=merchant,
        description=f"{label} - {items}" if items else label,
    )


def as_image_url(image: str) -> str:
    image = image.strip()
    if image.startswith(("data:", "http://", "https://")):
        return image
    return f"data:image/jpeg;base64,{image}"


class ReceiptExtractionService:
    def __init__(self, client: CompletionClient, model: str = "gpt-4o") -> None:
        self.client = client
        self.model = model

    def extract(self, image: str) -> ReceiptData:
        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": RECEIPT_PROMPT},
                    {"type": "image_url", "image_url": {"url": as_image_url(image)}},
                ],
            }
        ]
        try:
            content = self.client.complete(messages, model=self.model, max_tokens=300)
        except Exception as exc:
            raise ReceiptExtractionError(
                "Failed to reach receipt extraction service"
            ) from exc
        return parse_receipt_content(content)
