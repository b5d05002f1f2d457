"""Tool calls through the FastMCP server as an MCP client sees them."""
# pylint: disable=missing-function-docstring

import base64
import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from fastmcp import Client
from mcp.shared.exceptions import McpError
from mcp.types import INVALID_PARAMS, INVALID_REQUEST, METHOD_NOT_FOUND

from nano_banana_mcp.config import CONFIG_FILENAME, CredentialStore
from nano_banana_mcp.core import GenerationResult, InlineImage
from nano_banana_mcp.dispatcher import TOOL_NAMES, ToolDispatcher
from nano_banana_mcp.server import create_server
from nano_banana_mcp.session import SessionState
from nano_banana_mcp.storage import ImageWriter


class CannedClient:
    """Returns one PNG for every request."""

    def __init__(self):
        self.calls = []
        image = InlineImage(data=base64.b64encode(b"\x89PNGfake").decode("utf-8"), mime_type="image/png")
        self.result = GenerationResult(finish_reason="STOP", images=[image])

    def generate(self, prompt):
        self.calls.append(("generate", prompt))
        return self.result

    def edit(self, image, prompt, reference_images=None):
        self.calls.append(("edit", prompt))
        return self.result


class ServerTests(unittest.IsolatedAsyncioTestCase):
    """List and call tools over an in-memory MCP connection."""

    def setUp(self):
        self.env_patch = patch.dict(os.environ, {}, clear=True)
        self.env_patch.start()
        self.tmp = tempfile.TemporaryDirectory()  # pylint: disable=consider-using-with
        root = Path(self.tmp.name)
        self.client = CannedClient()
        session = SessionState()
        self.dispatcher = ToolDispatcher(
            store=CredentialStore(config_path=root / CONFIG_FILENAME),
            session=session,
            writer=ImageWriter(session, images_dir=root / "generated_imgs"),
            client_factory=lambda credential: self.client,
        )
        self.server = create_server(self.dispatcher)

    def tearDown(self):
        self.tmp.cleanup()
        self.env_patch.stop()

    async def _call(self, name, arguments=None):
        async with Client(self.server) as client:
            return await client.call_tool_mcp(name, arguments or {})

    async def _error(self, name, arguments=None):
        with self.assertRaises(McpError) as ctx:
            await self._call(name, arguments)
        return ctx.exception.error

    async def test_tools_listed_from_dispatcher(self):
        async with Client(self.server) as client:
            tools = await client.list_tools()

        self.assertEqual([tool.name for tool in tools], TOOL_NAMES)
        schemas = {tool.name: tool.inputSchema for tool in tools}
        self.assertEqual(schemas["configure_credential"]["required"], ["apiKey"])
        self.assertIn("Google AI Studio", schemas["configure_credential"]["properties"]["apiKey"]["description"])

    async def test_unknown_tool_code(self):
        error = await self._error("make_video", {"prompt": "x"})
        self.assertEqual(error.code, METHOD_NOT_FOUND)
        self.assertIn("make_video", error.message)

    async def test_not_configured_code(self):
        error = await self._error("generate_image", {"prompt": "a red circle"})
        self.assertEqual(error.code, INVALID_REQUEST)
        self.assertIn("not configured", error.message)
        self.assertEqual(self.client.calls, [])

    async def test_invalid_params_code(self):
        self.dispatcher.call("configure_credential", {"apiKey": "test-key"})
        for arguments in ({}, {"prompt": ["a", "b"]}):
            with self.subTest(arguments=arguments):
                error = await self._error("generate_image", arguments)
                self.assertEqual(error.code, INVALID_PARAMS)

    async def test_continue_without_image_ignores_arguments(self):
        self.dispatcher.call("configure_credential", {"apiKey": "test-key"})
        for arguments in ({}, {"prompt": "more"}):
            with self.subTest(arguments=arguments):
                error = await self._error("continue_editing", arguments)
                self.assertEqual(error.code, INVALID_REQUEST)
                self.assertIn("No previous image found", error.message)

    async def test_generate_returns_text_then_image(self):
        self.dispatcher.call("configure_credential", {"apiKey": "test-key"})

        result = await self._call("generate_image", {"prompt": "a red circle"})

        self.assertFalse(result.isError)
        self.assertEqual([item.type for item in result.content], ["text", "image"])
        self.assertIn("a red circle", result.content[0].text)
        self.assertEqual(self.client.calls, [("generate", "a red circle")])


if __name__ == "__main__":
    unittest.main()
