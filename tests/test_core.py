"""Unit tests for the Gemini generation adapter."""
# pylint: disable=missing-function-docstring

import base64
import dataclasses
import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from nano_banana_mcp import core
from nano_banana_mcp.config import Credential


def _response(finish_reason="STOP", parts=None):
    candidate = {"content": {"parts": parts or []}}
    if finish_reason is not None:
        candidate["finishReason"] = finish_reason
    return {"candidates": [candidate]}


def _image_part(data: bytes, mime_type="image/png"):
    return {"inlineData": {"mimeType": mime_type, "data": base64.b64encode(data).decode("utf-8")}}


class MimeTypeTests(unittest.TestCase):
    """Extension based MIME inference."""

    def test_supported_extensions(self):
        self.assertEqual(core.get_mime_type("photo.jpg"), "image/jpeg")
        self.assertEqual(core.get_mime_type("photo.jpeg"), "image/jpeg")
        self.assertEqual(core.get_mime_type("photo.png"), "image/png")
        self.assertEqual(core.get_mime_type("photo.webp"), "image/webp")

    def test_extension_case_is_ignored(self):
        self.assertEqual(core.get_mime_type("/tmp/PHOTO.PNG"), "image/png")
        self.assertEqual(core.get_mime_type("photo.JPeG"), "image/jpeg")

    def test_unknown_extensions_fall_back_to_jpeg(self):
        for name in ("photo.gif", "photo.bmp", "photo.unknown", "photo"):
            with self.subTest(name=name):
                self.assertEqual(core.get_mime_type(name), "image/jpeg")


class ResponseParsingTests(unittest.TestCase):
    """Completion status validation and segment extraction."""

    def test_no_candidates(self):
        for payload in ({}, {"candidates": []}):
            with self.assertRaises(core.GenerationError) as ctx:
                core.parse_generation_response(payload)
            self.assertIn("No candidates", str(ctx.exception))

    def test_missing_finish_reason(self):
        with self.assertRaises(core.GenerationError) as ctx:
            core.parse_generation_response(_response(finish_reason=None))
        self.assertIn("may have been interrupted", str(ctx.exception))

    def test_rejected_finish_reason_is_reported(self):
        with self.assertRaises(core.GenerationError) as ctx:
            core.parse_generation_response(_response(finish_reason="SAFETY"))
        self.assertIn("SAFETY", str(ctx.exception))

    def test_max_tokens_is_accepted(self):
        result = core.parse_generation_response(_response(finish_reason="MAX_TOKENS"))
        self.assertEqual(result.finish_reason, "MAX_TOKENS")
        self.assertEqual(result.images, [])

    def test_text_and_images_are_collected_in_order(self):
        payload = _response(parts=[
            {"text": "A red "},
            _image_part(b"first"),
            {"text": "circle"},
            _image_part(b"second", "image/jpeg"),
        ])
        result = core.parse_generation_response(payload)

        self.assertEqual(result.text, "A red circle")
        self.assertEqual([img.decode() for img in result.images], [b"first", b"second"])
        self.assertEqual([img.mime_type for img in result.images], ["image/png", "image/jpeg"])
        self.assertEqual(
            [f.name for f in dataclasses.fields(result)], ["finish_reason", "text", "images"]
        )

    def test_inline_data_without_mime_type_defaults_to_png(self):
        payload = _response(parts=[{"inlineData": {"data": base64.b64encode(b"x").decode()}}])
        result = core.parse_generation_response(payload)
        self.assertEqual(result.images[0].mime_type, "image/png")


class ClientTests(unittest.TestCase):
    """Request building for the generateContent endpoint."""

    def setUp(self):
        self.env_patch = patch.dict(os.environ, {}, clear=True)
        self.env_patch.start()

    def tearDown(self):
        self.env_patch.stop()

    @patch("nano_banana_mcp.core._http_post_json")
    def test_generate_posts_prompt_to_default_endpoint(self, mock_post):
        mock_post.return_value = _response(parts=[_image_part(b"png")])
        client = core.GeminiImageClient(Credential(api_key="test-key"))

        result = client.generate("a red circle")

        url, body, key = mock_post.call_args[0]
        self.assertEqual(
            url,
            "https://generativelanguage.googleapis.com/v1beta/models/gemini-2.5-flash-image-preview:generateContent",
        )
        self.assertEqual(key, "test-key")
        self.assertEqual(body["contents"][0]["parts"], [{"text": "a red circle"}])
        self.assertEqual(result.images[0].decode(), b"png")

    @patch("nano_banana_mcp.core._http_post_json")
    def test_custom_base_url_and_model(self, mock_post):
        os.environ[core.MODEL_ENV] = "env-model"
        mock_post.return_value = _response()
        client = core.GeminiImageClient(Credential(api_key="k", base_url="https://proxy.example.com/"))

        client.generate("hello")

        self.assertEqual(
            mock_post.call_args[0][0],
            "https://proxy.example.com/v1beta/models/env-model:generateContent",
        )

    @patch("nano_banana_mcp.core._http_post_json")
    def test_edit_sends_images_before_prompt(self, mock_post):
        mock_post.return_value = _response(parts=[_image_part(b"edited")])
        client = core.GeminiImageClient(Credential(api_key="k"), model_id="edit-model")
        primary = core.InlineImage(data="cHJpbWFyeQ==", mime_type="image/png")
        ref = core.InlineImage(data="cmVm", mime_type="image/webp")

        client.edit(primary, "make it green", [ref])

        parts = mock_post.call_args[0][1]["contents"][0]["parts"]
        self.assertEqual(parts[0]["inlineData"], {"mimeType": "image/png", "data": "cHJpbWFyeQ=="})
        self.assertEqual(parts[1]["inlineData"], {"mimeType": "image/webp", "data": "cmVm"})
        self.assertEqual(parts[2], {"text": "make it green"})

    def test_empty_prompt_rejected(self):
        with self.assertRaises(ValueError):
            core.build_request_body("")


class ImageFileTests(unittest.TestCase):
    """Reading edit inputs from disk."""

    def test_read_image_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "input.webp"
            path.write_bytes(b"data")

            image = core.read_image_file(path)

        self.assertEqual(image.mime_type, "image/webp")
        self.assertEqual(base64.b64decode(image.data), b"data")

    def test_read_image_file_missing(self):
        with self.assertRaises(OSError):
            core.read_image_file("/nonexistent/image.png")

    def test_unreadable_reference_is_skipped(self):
        with tempfile.TemporaryDirectory() as tmp:
            good = Path(tmp) / "good.png"
            good.write_bytes(b"good")

            images = core.load_reference_images([str(Path(tmp) / "missing.png"), str(good)])

        self.assertEqual(len(images), 1)
        self.assertEqual(images[0].decode(), b"good")


if __name__ == "__main__":
    unittest.main()
