"""nano-banana MCP Server - Gemini image generation and editing.

This package provides an MCP server that generates and edits images with
Google's Gemini 2.5 Flash Image model and remembers the last produced image
for iterative editing.
"""

from .config import ConfigSource, Credential, CredentialStore
from .core import (
    GeminiImageClient,
    GenerationError,
    GenerationResult,
    InlineImage,
    get_mime_type,
    parse_generation_response,
    read_image_file,
)
from .dispatcher import TOOL_NAMES, ToolDispatcher
from .session import SessionState
from .storage import ImageWriter, build_image_filename, get_images_directory

__all__ = [
    "ConfigSource",
    "Credential",
    "CredentialStore",
    "GeminiImageClient",
    "GenerationError",
    "GenerationResult",
    "ImageWriter",
    "InlineImage",
    "SessionState",
    "TOOL_NAMES",
    "ToolDispatcher",
    "build_image_filename",
    "get_images_directory",
    "get_mime_type",
    "parse_generation_response",
    "read_image_file",
]

__version__ = "1.0.0"
