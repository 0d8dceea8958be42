"""Extraction client adapter talking to the Gemini REST API."""

from __future__ import annotations

import json
import os
import textwrap
from typing import Any, Protocol, Sequence

import httpx
import structlog
from pydantic import ValidationError

from ..config import ExtractionSettings
from .models import ExtractedRecord


class ExtractionError(RuntimeError):
    """The extraction call failed; the message is shown to the user as-is."""


class MalformedResponseError(ExtractionError):
    """The service answered, but not with a list of center records."""


class ExtractionClient(Protocol):
    """Async contract the orchestrator depends on."""

    async def extract(
        self, code: str, known_results: Sequence[ExtractedRecord]
    ) -> list[ExtractedRecord]: ...


RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "centerName": {
                "type": "STRING",
                "description": "The full name of the diagnostic center or hospital.",
            },
            "address": {
                "type": "STRING",
                "description": "The complete mailing address of the center.",
            },
            "contactDetails": {
                "type": "STRING",
                "description": "The primary phone number or contact information.",
            },
            "doctorDetails": {
                "type": "ARRAY",
                "description": "Names of doctors associated with the center, if any are found.",
                "items": {"type": "STRING"},
            },
            "googleMapsLink": {
                "type": "STRING",
                "description": "A Google Maps link pointing at the center.",
            },
            "reasoning": {
                "type": "STRING",
                "description": "Why the sources confirm a CT scanner at this center.",
            },
        },
        "required": ["centerName", "address", "contactDetails"],
    },
}


def _strip_fences(text: str) -> str:
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = stripped.split("\n", 1)[1] if "\n" in stripped else ""
        if stripped.rstrip().endswith("```"):
            stripped = stripped.rstrip()[:-3]
    return stripped.strip()


def parse_records(text: str) -> list[ExtractedRecord]:
    """Interpret the structured-extraction payload as a list of records."""

    cleaned = _strip_fences(text)
    if not cleaned:
        return []
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise MalformedResponseError(f"Response is not valid JSON: {exc.msg}") from exc
    if not isinstance(payload, list):
        raise MalformedResponseError("Response must be a JSON array of centers")
    try:
        return [ExtractedRecord.model_validate(entry) for entry in payload]
    except ValidationError as exc:
        raise MalformedResponseError(
            f"Response entries do not match the center schema: {exc.error_count()} error(s)"
        ) from exc


def coerce_records(payload: Any) -> list[ExtractedRecord]:
    """Validate whatever an extraction client returned into center records."""

    if payload is None:
        return []
    try:
        return [
            entry if isinstance(entry, ExtractedRecord) else ExtractedRecord.model_validate(entry)
            for entry in payload
        ]
    except ValidationError as exc:
        raise MalformedResponseError(
            f"Response entries do not match the center schema: {exc.error_count()} error(s)"
        ) from exc
    except TypeError as exc:
        raise MalformedResponseError("Response must be a list of centers") from exc


def response_text(data: Any) -> str:
    """Concatenate the text parts of the first candidate in a generateContent reply."""

    if not isinstance(data, dict):
        raise MalformedResponseError("Response body is not a JSON object")
    candidates = data.get("candidates")
    if not candidates:
        feedback = data.get("promptFeedback") or {}
        reason = feedback.get("blockReason") if isinstance(feedback, dict) else None
        if reason:
            raise ExtractionError(f"Request blocked by the service: {reason}")
        raise MalformedResponseError("Response contains no candidates")
    content = candidates[0].get("content") or {}
    parts = content.get("parts") or []
    return "".join(part.get("text", "") for part in parts if isinstance(part, dict))


class GeminiExtractionClient:
    """Two-stage lookup: search-grounded research, then schema-bound extraction."""

    def __init__(
        self,
        settings: ExtractionSettings,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.settings = settings
        key = api_key or os.environ.get(settings.api_key_env)
        if not key:
            raise ExtractionError(f"{settings.api_key_env} environment variable not set")
        self._api_key = key
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=settings.timeout_seconds)
        self.logger = logger or structlog.get_logger("ct_discoverer.extractor")

    async def __aenter__(self) -> "GeminiExtractionClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    @property
    def endpoint(self) -> str:
        return f"{self.settings.base_url}/models/{self.settings.model}:generateContent"

    async def extract(
        self, code: str, known_results: Sequence[ExtractedRecord]
    ) -> list[ExtractedRecord]:
        grounding = await self._generate(self._grounding_request(code))
        if not grounding.strip():
            self.logger.info("grounding_empty", pincode=code)
            return []
        text = await self._generate(self._extraction_request(code, grounding, known_results))
        records = parse_records(text)
        self.logger.info("extraction_parsed", pincode=code, records=len(records))
        return records

    # ------------------------------------------------------------------
    def _grounding_request(self, code: str) -> dict[str, Any]:
        prompt = textwrap.dedent(
            f"""
            Find all diagnostic centers, imaging centers, or hospitals in the area of
            pincode {code}, {self.settings.country} that offer CT Scan services.
            Analyze the search results, including names, descriptions, reviews, and
            website contents, to definitively confirm the presence of a CT (Computed
            Tomography) scanner. For each center you are highly confident has a CT
            scanner, report its name, full address, phone number, a Google Maps link,
            any associated doctor names, and the evidence that confirms the scanner.
            """
        ).strip()
        return {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "tools": [{"google_search": {}}],
        }

    def _extraction_request(
        self, code: str, grounding: str, known_results: Sequence[ExtractedRecord]
    ) -> dict[str, Any]:
        known = "\n".join(
            f"- {record.center_name} ({record.address})" for record in known_results
        )
        exclusions = (
            f"These centers are already recorded; do not repeat them:\n{known}\n\n" if known else ""
        )
        prompt = (
            f"Convert the research notes about CT scan centers near pincode {code} into "
            "structured records. Only include centers with a confirmed CT scanner. "
            "If none are confirmed, return an empty array.\n\n"
            f"{exclusions}Research notes:\n{grounding}"
        )
        return {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": RESPONSE_SCHEMA,
            },
        }

    async def _generate(self, body: dict[str, Any]) -> str:
        try:
            response = await self._client.post(
                self.endpoint,
                json=body,
                headers={"x-goog-api-key": self._api_key},
            )
        except httpx.HTTPError as exc:
            raise ExtractionError(f"Request to extraction service failed: {exc}") from exc
        if response.status_code >= 400:
            snippet = response.text[:200]
            raise ExtractionError(
                f"Extraction service returned {response.status_code}: {snippet}"
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise MalformedResponseError("Response body is not JSON") from exc
        return response_text(data)


__all__ = [
    "ExtractionClient",
    "ExtractionError",
    "GeminiExtractionClient",
    "MalformedResponseError",
    "RESPONSE_SCHEMA",
    "coerce_records",
    "parse_records",
    "response_text",
]
