"""Tool dispatcher: routes tool calls to handlers and shapes their results.

Every call returns an ordered list of MCP content items (summary text first,
then any images). Failures are raised as ``McpError`` carrying one of the
JSON-RPC categories from ``mcp.types``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Type, Union

from mcp.shared.exceptions import McpError
from mcp.types import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    ErrorData,
    ImageContent,
    TextContent,
    Tool,
)
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .config import API_KEY_ENV, BASE_URL_ENV, CONFIG_FILENAME, ConfigSource, CredentialStore, Credential
from .config import describe_validation_error
from .core import MODEL_DISPLAY_NAME, GeminiImageClient, GenerationResult, load_reference_images, read_image_file
from .session import SessionState
from .storage import EDITED, GENERATED, ImageWriter

logger = logging.getLogger(__name__)

Content = Union[TextContent, ImageContent]
ClientFactory = Callable[[Credential], GeminiImageClient]

RETRY_TIP = "💡 Tip: Try running the command again - sometimes the first call needs to warm up the model."


def tool_error(code: int, message: str) -> McpError:
    """Build an ``McpError`` for the given JSON-RPC error code."""
    return McpError(ErrorData(code=code, message=message))


class _Arguments(BaseModel):
    model_config = ConfigDict(strict=True, extra="ignore")


class ConfigureCredentialArgs(_Arguments):
    apiKey: str = Field(description="Your Gemini API key from Google AI Studio")
    baseUrl: Optional[str] = Field(
        default=None,
        description="Optional custom base URL for the Gemini API (e.g., for custom endpoints or proxies)",
    )


class GenerateImageArgs(_Arguments):
    prompt: str = Field(description="Text prompt describing the NEW image to create from scratch")


class EditImageArgs(_Arguments):
    imagePath: str = Field(description="Full file path to the main image file to edit")
    prompt: str = Field(description="Text describing the modifications to make to the existing image")
    referenceImages: Optional[List[str]] = Field(
        default=None,
        description="Optional array of file paths to additional reference images to use during editing "
                    "(e.g., for style transfer, adding elements, etc.)",
    )


class ContinueEditingArgs(_Arguments):
    prompt: str = Field(
        description="Text describing the modifications/changes/improvements to make to the last image "
                    "(e.g., 'change the hat color to red', 'remove the background', 'add flowers')",
    )
    referenceImages: Optional[List[str]] = Field(
        default=None,
        description="Optional array of file paths to additional reference images to use during editing "
                    "(e.g., for style transfer, adding elements from other images, etc.)",
    )


class NoArgs(_Arguments):
    pass


@dataclass(frozen=True)
class ToolSpec:
    """One entry of the fixed tool table."""
    name: str
    description: str
    arguments: Type[_Arguments]
    handler: str
    # Checked before argument validation
    preflight: Optional[str] = None


TOOL_SPECS: Sequence[ToolSpec] = (
    ToolSpec(
        name="configure_credential",
        description="Configure your Gemini API token and optional base URL for nano-banana image generation",
        arguments=ConfigureCredentialArgs,
        handler="configure_credential",
    ),
    ToolSpec(
        name="generate_image",
        description="Generate a NEW image from text prompt. Use this ONLY when creating a completely new image, "
                    "not when modifying an existing one.",
        arguments=GenerateImageArgs,
        handler="generate_image",
    ),
    ToolSpec(
        name="edit_image",
        description="Edit a SPECIFIC existing image file, optionally using additional reference images. "
                    "Use this when you have the exact file path of an image to modify.",
        arguments=EditImageArgs,
        handler="edit_image",
    ),
    ToolSpec(
        name="get_configuration_status",
        description="Check if Gemini API token is configured",
        arguments=NoArgs,
        handler="get_configuration_status",
    ),
    ToolSpec(
        name="continue_editing",
        description="Continue editing the LAST image that was generated or edited in this session, optionally "
                    "using additional reference images. Use this for iterative improvements, modifications, or "
                    "changes to the most recent image. This automatically uses the previous image without "
                    "needing a file path.",
        arguments=ContinueEditingArgs,
        handler="continue_editing",
        preflight="_require_session_image",
    ),
    ToolSpec(
        name="get_last_image_info",
        description="Get information about the last generated/edited image in this session (file path, size, "
                    "etc.). Use this to check what image is currently available for continue_editing.",
        arguments=NoArgs,
        handler="get_last_image_info",
    ),
)

TOOL_NAMES: List[str] = [spec.name for spec in TOOL_SPECS]


def _describe_arguments_error(exc: ValidationError) -> str:
    messages = []
    for err in exc.errors():
        loc = ".".join(str(item) for item in err.get("loc", ())) or "arguments"
        messages.append(f"{loc}: {err.get('msg')}")
    return "; ".join(messages)


def _bulleted(paths: Sequence[Any]) -> str:
    return "\n".join(f"- {p}" for p in paths)


def _image_items(result: GenerationResult) -> List[Content]:
    return [ImageContent(type="image", data=img.data, mimeType=img.mime_type) for img in result.images]


class ToolDispatcher:
    """Owns the credential store and session state and serves the tool table."""

    def __init__(
        self,
        store: Optional[CredentialStore] = None,
        session: Optional[SessionState] = None,
        writer: Optional[ImageWriter] = None,
        client_factory: ClientFactory = GeminiImageClient,
    ) -> None:
        self.store = store or CredentialStore()
        self.session = session or SessionState()
        self.writer = writer or ImageWriter(self.session)
        self.client_factory = client_factory
        self._specs: Dict[str, ToolSpec] = {spec.name: spec for spec in TOOL_SPECS}

    def list_tools(self) -> List[Tool]:
        return [
            Tool(name=spec.name, description=spec.description, inputSchema=spec.arguments.model_json_schema())
            for spec in TOOL_SPECS
        ]

    def call(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> List[Content]:
        """Dispatch one tool invocation.

        Raises:
            McpError: ``METHOD_NOT_FOUND`` for unknown tools, ``INVALID_PARAMS``
                for bad arguments, ``INVALID_REQUEST`` when the server is not
                ready for the call, ``INTERNAL_ERROR`` for everything else.
        """
        spec = self._specs.get(name)
        if spec is None:
            raise tool_error(METHOD_NOT_FOUND, f"Unknown tool: {name}")

        if spec.preflight:
            getattr(self, spec.preflight)()

        try:
            args = spec.arguments.model_validate(arguments or {})
        except ValidationError as exc:
            raise tool_error(INVALID_PARAMS, f"Invalid arguments for {name}: {_describe_arguments_error(exc)}") from exc

        try:
            return getattr(self, spec.handler)(args)
        except McpError:
            raise
        except Exception as exc:  # noqa: BLE001 every other failure is reported as an internal error
            logger.exception("Tool %s failed", name)
            raise tool_error(INTERNAL_ERROR, f"Tool execution failed: {exc}") from exc

    # -- preconditions -----------------------------------------------------

    def _require_credential(self) -> Credential:
        credential = self.store.credential
        if credential is None:
            raise tool_error(INVALID_REQUEST, "Gemini API token not configured. Use configure_credential first.")
        return credential

    def _require_client(self) -> GeminiImageClient:
        return self.client_factory(self._require_credential())

    def _require_session_image(self) -> Path:
        self._require_credential()
        path = self.session.last_image_path
        if not self.session.has_image():
            raise tool_error(
                INVALID_REQUEST,
                "No previous image found. Please generate or edit an image first, "
                "then use continue_editing for subsequent edits.",
            )
        if not self.session.image_exists():
            raise tool_error(
                INVALID_REQUEST,
                f"Last image file not found at: {path}. Please generate a new image first.",
            )
        return path

    # -- handlers ----------------------------------------------------------

    def configure_credential(self, args: ConfigureCredentialArgs) -> List[Content]:
        try:
            credential = self.store.configure(args.apiKey, args.baseUrl)
        except ValidationError as exc:
            raise tool_error(INVALID_PARAMS, f"Invalid configuration: {describe_validation_error(exc)}") from exc

        text = "✅ Gemini API token configured successfully! You can now use nano-banana image generation features."
        if credential.base_url:
            text += f"\n🌐 Custom base URL configured: {credential.base_url}"
        return [TextContent(type="text", text=text)]

    def generate_image(self, args: GenerateImageArgs) -> List[Content]:
        client = self._require_client()
        try:
            result = client.generate(args.prompt)
            saved = [self.writer.save(image, GENERATED) for image in result.images]
        except (ValueError, RuntimeError, OSError) as exc:
            logger.error("Error generating image: %s", exc)
            raise tool_error(INTERNAL_ERROR, f"Failed to generate image: {exc}") from exc

        text = f'🎨 Image generated with nano-banana ({MODEL_DISPLAY_NAME})!\n\nPrompt: "{args.prompt}"'
        if result.text:
            text += f"\n\nDescription: {result.text}"
        if saved:
            text += f"\n\n📁 Image saved to:\n{_bulleted(saved)}"
        else:
            text += "\n\nNote: No image was generated. The model may have returned only text."
            text += f"\n\n{RETRY_TIP}"

        return [TextContent(type="text", text=text), *_image_items(result)]

    def edit_image(self, args: EditImageArgs) -> List[Content]:
        client = self._require_client()
        references = args.referenceImages or []
        try:
            image = read_image_file(args.imagePath)
            loaded = load_reference_images(references)
            result = client.edit(image, args.prompt, loaded)
            saved = [self.writer.save(edited, EDITED) for edited in result.images]
        except (ValueError, RuntimeError, OSError) as exc:
            logger.error("Error editing image: %s", exc)
            raise tool_error(INTERNAL_ERROR, f"Failed to edit image: {exc}") from exc

        text = f'🎨 Image edited with nano-banana!\n\nOriginal: {args.imagePath}\nEdit prompt: "{args.prompt}"'
        if references:
            text += f"\n\nReference images used:\n{_bulleted(references)}"
            skipped = len(references) - len(loaded)
            if skipped:
                text += f"\n⚠️ {skipped} reference image(s) could not be read and were skipped."
        if result.text:
            text += f"\n\nDescription: {result.text}"
        if saved:
            text += f"\n\n📁 Edited image saved to:\n{_bulleted(saved)}"
            text += "\n\n💡 View the edited image by opening the file at the path above."
            text += "\n\n🔄 To continue editing, use: continue_editing"
            text += "\n📋 To check current image info, use: get_last_image_info"
        else:
            text += "\n\nNote: No edited image was generated."
            text += f"\n\n{RETRY_TIP}"

        return [TextContent(type="text", text=text), *_image_items(result)]

    def continue_editing(self, args: ContinueEditingArgs) -> List[Content]:
        # Existence already checked by the preflight
        path = self.session.last_image_path
        return self.edit_image(
            EditImageArgs(imagePath=str(path), prompt=args.prompt, referenceImages=args.referenceImages)
        )

    def get_configuration_status(self, args: NoArgs) -> List[Content]:
        credential = self.store.credential
        if credential is None:
            text = (
                "❌ Gemini API token is not configured\n\n"
                "📝 Configuration options (in priority order):\n"
                "1. 🥇 MCP client environment variables (Recommended)\n"
                f"   - {API_KEY_ENV} (required)\n"
                f"   - {BASE_URL_ENV} (optional, for custom endpoints)\n"
                f"2. 🥈 Local configuration file ({CONFIG_FILENAME})\n"
                "3. 🥉 Use the configure_credential tool\n\n"
                "💡 For the most secure setup, add this to your MCP configuration:\n"
                '"env": {\n'
                f'  "{API_KEY_ENV}": "your-api-key-here",\n'
                f'  "{BASE_URL_ENV}": "https://custom-endpoint.example.com"\n'
                "}"
            )
            return [TextContent(type="text", text=text)]

        text = "✅ Gemini API token is configured and ready to use"
        if credential.base_url:
            text += f"\n🌐 Custom base URL: {credential.base_url}"
        if self.store.source is ConfigSource.ENVIRONMENT:
            env_names = API_KEY_ENV + (f" + {BASE_URL_ENV}" if credential.base_url else "")
            text += f"\n📍 Source: Environment variables ({env_names})"
            text += "\n💡 This is the most secure configuration method."
        else:
            text += f"\n📍 Source: Local configuration file ({CONFIG_FILENAME})"
            text += "\n💡 Consider using environment variables for better security."
        return [TextContent(type="text", text=text)]

    def get_last_image_info(self, args: NoArgs) -> List[Content]:
        path = self.session.last_image_path
        if path is None:
            text = (
                "📷 No previous image found.\n\n"
                "Please generate or edit an image first, then this command will show information "
                "about your last image."
            )
            return [TextContent(type="text", text=text)]

        stat = self.session.stat()
        if stat is None:
            text = (
                f"📷 Last Image Information:\n\nPath: {path}\nStatus: ❌ File not found\n\n"
                "💡 The image file may have been moved or deleted. Please generate a new image."
            )
            return [TextContent(type="text", text=text)]

        modified = datetime.fromtimestamp(stat.st_mtime).strftime("%Y-%m-%d %H:%M:%S")
        text = (
            f"📷 Last Image Information:\n\nPath: {path}\n"
            f"File Size: {round(stat.st_size / 1024)} KB ({stat.st_size} bytes)\n"
            f"Last Modified: {modified}\n\n"
            "💡 Use continue_editing to make further changes to this image."
        )
        return [TextContent(type="text", text=text)]


__all__ = [
    "ContinueEditingArgs",
    "ConfigureCredentialArgs",
    "EditImageArgs",
    "GenerateImageArgs",
    "TOOL_NAMES",
    "TOOL_SPECS",
    "ToolDispatcher",
    "ToolSpec",
    "tool_error",
]
