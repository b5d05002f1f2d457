"""Gemini image generation adapter for the nano-banana MCP server.

This module provides:
- Text-to-image and image(+references)-to-image requests against Gemini
- Validation of the response completion status
- MIME type inference and image file reading for edit inputs

HTTP is done with the standard library only (no external HTTP libraries).
"""
from __future__ import annotations

import base64
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from urllib import error, request

from .config import Credential

logger = logging.getLogger(__name__)

# Default settings
DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com"
API_VERSION = "v1beta"
DEFAULT_MIME_TYPE = "image/png"
DEFAULT_MODEL_ID = "gemini-2.5-flash-image-preview"
MODEL_ENV = "GEMINI_IMAGE_MODEL"
MODEL_DISPLAY_NAME = "Gemini 2.5 Flash Image"

# Terminal finish reasons that still carry a usable response
ACCEPTED_FINISH_REASONS = ("STOP", "MAX_TOKENS")

# Anything not listed falls back to image/jpeg
EXTENSION_MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
}
FALLBACK_MIME_TYPE = "image/jpeg"


class GenerationError(RuntimeError):
    """The Gemini API call failed or returned an unusable response."""


@dataclass
class InlineImage:
    """Base64-encoded image data with its MIME type."""
    data: str
    mime_type: str = DEFAULT_MIME_TYPE

    def to_part(self) -> Dict[str, Any]:
        return {"inlineData": {"mimeType": self.mime_type, "data": self.data}}

    def decode(self) -> bytes:
        return base64.b64decode(self.data)


@dataclass
class GenerationResult:
    """Segments returned by one generateContent call."""
    finish_reason: str
    text: str = ""
    images: List[InlineImage] = field(default_factory=list)


def get_mime_type(file_path: "Path | str") -> str:
    """Infer an image MIME type from the file extension."""
    return EXTENSION_MIME_TYPES.get(Path(file_path).suffix.lower(), FALLBACK_MIME_TYPE)


def read_image_file(image_path: "Path | str") -> InlineImage:
    """Read an image file into base64 data plus its inferred MIME type.

    Raises:
        OSError: If the file cannot be read.
    """
    path = Path(image_path)
    image_bytes = path.read_bytes()
    return InlineImage(
        data=base64.b64encode(image_bytes).decode("utf-8"),
        mime_type=get_mime_type(path),
    )


def load_reference_images(paths: Iterable[str]) -> List[InlineImage]:
    """Read reference images, skipping any that cannot be loaded."""
    images: List[InlineImage] = []
    for ref_path in paths:
        try:
            images.append(read_image_file(ref_path))
        except OSError as exc:
            logger.warning("Skipping reference image %s: %s", ref_path, exc)
    return images


def build_url(*, base_url: Optional[str], model_id: str) -> str:
    """Build the generateContent endpoint URL."""
    base = (base_url or DEFAULT_BASE_URL).rstrip("/")
    return f"{base}/{API_VERSION}/models/{model_id}:generateContent"


def build_request_body(prompt: str) -> Dict[str, Any]:
    """Build the request body for a text-to-image call."""
    if not prompt or not isinstance(prompt, str):
        raise ValueError("Prompt is required and must be a string.")

    return {
        "contents": [{"parts": [{"text": prompt}]}],
        "generationConfig": {"responseModalities": ["TEXT", "IMAGE"]},
    }


def build_edit_request_body(
    prompt: str,
    image: InlineImage,
    reference_images: Optional[List[InlineImage]] = None,
) -> Dict[str, Any]:
    """Build the request body for editing an image.

    The primary image comes first, then each reference image, then the prompt.
    """
    if not prompt or not isinstance(prompt, str):
        raise ValueError("Prompt is required and must be a string.")

    parts: List[Dict[str, Any]] = [image.to_part()]
    parts.extend(ref.to_part() for ref in reference_images or [])
    parts.append({"text": prompt})

    return {
        "contents": [{"parts": parts}],
        "generationConfig": {"responseModalities": ["TEXT", "IMAGE"]},
    }


def _http_post_json(url: str, payload: Dict[str, Any], api_key: str, timeout: int = 120) -> Dict[str, Any]:
    """Make an HTTP POST request and return the JSON response."""
    req = request.Request(
        url,
        data=json.dumps(payload).encode("utf-8"),
        headers={
            "Content-Type": "application/json",
            "x-goog-api-key": api_key,
        },
        method="POST",
    )
    try:
        with request.urlopen(req, timeout=timeout) as resp:
            return json.loads(resp.read().decode("utf-8"))
    except error.HTTPError as exc:
        detail = exc.read().decode("utf-8", errors="ignore") if hasattr(exc, "read") else ""
        raise GenerationError(f"API error {exc.code}: {detail[:400]}") from exc
    except error.URLError as exc:
        raise GenerationError(f"Network error: {exc}") from exc
    except ValueError as exc:
        raise GenerationError(f"Invalid JSON in API response: {exc}") from exc


def parse_generation_response(payload: Dict[str, Any]) -> GenerationResult:
    """Validate the completion status and collect text and image segments.

    Raises:
        GenerationError: If there are no candidates, the finish reason is
            missing, or it is not one of ``ACCEPTED_FINISH_REASONS``.
    """
    candidates = payload.get("candidates") or []
    if not candidates:
        raise GenerationError("No candidates in response from Gemini API")

    candidate = candidates[0]
    finish_reason = candidate.get("finishReason")
    if not finish_reason:
        raise GenerationError("Response missing finish reason - generation may have been interrupted")
    if finish_reason not in ACCEPTED_FINISH_REASONS:
        raise GenerationError(f"Generation failed with finish reason: {finish_reason}")

    result = GenerationResult(finish_reason=finish_reason)
    parts = (candidate.get("content") or {}).get("parts") or []
    for part in parts:
        if part.get("text"):
            result.text += part["text"]
        inline = part.get("inlineData") or {}
        if inline.get("data"):
            result.images.append(
                InlineImage(data=inline["data"], mime_type=inline.get("mimeType") or DEFAULT_MIME_TYPE)
            )
    return result


class GeminiImageClient:
    """Calls the Gemini generateContent endpoint with a resolved credential."""

    def __init__(self, credential: Credential, model_id: Optional[str] = None) -> None:
        self.credential = credential
        self.model_id = model_id or os.getenv(MODEL_ENV) or DEFAULT_MODEL_ID

    @property
    def url(self) -> str:
        return build_url(base_url=self.credential.base_url, model_id=self.model_id)

    def _generate(self, body: Dict[str, Any]) -> GenerationResult:
        logger.debug("POST %s", self.url)
        payload = _http_post_json(self.url, body, self.credential.api_key)
        return parse_generation_response(payload)

    def generate(self, prompt: str) -> GenerationResult:
        """Generate a new image from a text prompt."""
        return self._generate(build_request_body(prompt))

    def edit(
        self,
        image: InlineImage,
        prompt: str,
        reference_images: Optional[List[InlineImage]] = None,
    ) -> GenerationResult:
        """Edit ``image`` according to ``prompt``, with optional reference images."""
        return self._generate(build_edit_request_body(prompt, image, reference_images))


__all__ = [
    "ACCEPTED_FINISH_REASONS",
    "DEFAULT_BASE_URL",
    "DEFAULT_MIME_TYPE",
    "DEFAULT_MODEL_ID",
    "GeminiImageClient",
    "GenerationError",
    "GenerationResult",
    "InlineImage",
    "build_edit_request_body",
    "build_request_body",
    "build_url",
    "get_mime_type",
    "load_reference_images",
    "parse_generation_response",
    "read_image_file",
]
