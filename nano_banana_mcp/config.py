"""Credential resolution and persistence for the nano-banana MCP server.

The active credential is resolved once at startup by trying an ordered list of
resolvers (environment first, then the local JSON config file). An explicit
``configure_credential`` call replaces it and rewrites the config file.
"""
from __future__ import annotations

import json
import logging
import os
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from pydantic import AliasChoices, AnyHttpUrl, BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic import ValidationError

logger = logging.getLogger(__name__)

# Environment variable names
API_KEY_ENV = "GEMINI_API_KEY"
BASE_URL_ENV = "GEMINI_BASE_URL"

CONFIG_FILENAME = ".nano-banana-config.json"

# Look for .env in the working directory and the project root
DOTENV_CANDIDATES = [
    Path.cwd() / ".env",
    Path(__file__).resolve().parents[1] / ".env",
    Path(__file__).resolve().parents[1] / ".env.local",
]

_URL_ADAPTER = TypeAdapter(AnyHttpUrl)


class ConfigSource(str, Enum):
    """Where the active credential came from (status reporting only)."""
    ENVIRONMENT = "environment"
    CONFIG_FILE = "config_file"
    NOT_CONFIGURED = "not_configured"


class Credential(BaseModel):
    """Gemini API key plus an optional alternate endpoint."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    api_key: str = Field(
        min_length=1,
        validation_alias=AliasChoices("apiKey", "api_key", "geminiApiKey"),
        serialization_alias="apiKey",
    )
    base_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("baseUrl", "base_url"),
        serialization_alias="baseUrl",
    )

    @field_validator("api_key", mode="before")
    @classmethod
    def _require_key(cls, value):
        if isinstance(value, str) and not value.strip():
            raise ValueError("Gemini API key is required")
        return value

    @field_validator("base_url", mode="before")
    @classmethod
    def _check_url(cls, value):
        if value is None or value == "":
            return None
        if not isinstance(value, str):
            raise ValueError("Base URL must be a string")
        try:
            _URL_ADAPTER.validate_python(value)
        except ValidationError as exc:
            raise ValueError("Base URL must be a valid URL") from exc
        return value

    def to_file_payload(self) -> dict:
        """Return the JSON document written to the config file."""
        return self.model_dump(by_alias=True, exclude_none=True)


Resolution = Tuple[Credential, ConfigSource]


def prime_dotenv_env() -> None:
    """Load environment variables from .env files for local development."""
    for env_file in DOTENV_CANDIDATES:
        try:
            if not env_file.exists():
                continue
            for raw_line in env_file.read_text().splitlines():
                line = raw_line.strip()
                if not line or line.startswith("#") or "=" not in line:
                    continue
                name, val = line.split("=", 1)
                name = name.strip()
                if not name or name in os.environ:
                    continue
                cleaned = val.strip().strip('"').strip("'")
                if cleaned:
                    os.environ[name] = cleaned
        except OSError:
            continue


def default_config_path() -> Path:
    """Config file location: the server's working directory."""
    return Path.cwd() / CONFIG_FILENAME


def resolve_from_environment(store: "CredentialStore") -> Optional[Resolution]:
    """Resolve from GEMINI_API_KEY / GEMINI_BASE_URL."""
    key = os.getenv(API_KEY_ENV)
    if not key:
        return None
    try:
        credential = Credential(api_key=key, base_url=os.getenv(BASE_URL_ENV))
    except ValidationError as exc:
        logger.warning("Ignoring invalid credential in environment: %s", describe_validation_error(exc))
        return None
    return credential, ConfigSource.ENVIRONMENT


def resolve_from_config_file(store: "CredentialStore") -> Optional[Resolution]:
    """Resolve from the persisted JSON config file."""
    path = store.config_path
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as exc:
        logger.warning("Could not read config file %s: %s", path, exc)
        return None
    try:
        credential = Credential.model_validate(raw)
    except ValidationError as exc:
        logger.warning("Ignoring invalid config file %s: %s", path, describe_validation_error(exc))
        return None
    return credential, ConfigSource.CONFIG_FILE


DEFAULT_RESOLVERS: List[Callable[["CredentialStore"], Optional[Resolution]]] = [
    resolve_from_environment,
    resolve_from_config_file,
]


def describe_validation_error(exc: ValidationError) -> str:
    """First human-readable message from a credential validation error."""
    errors = exc.errors()
    if not errors:
        return str(exc)
    message = errors[0].get("msg", str(exc))
    # pydantic prefixes ValueError messages raised from validators
    return message.replace("Value error, ", "", 1)


class CredentialStore:
    """Holds the active credential and its provenance for the process lifetime."""

    def __init__(
        self,
        config_path: Optional[Path] = None,
        resolvers: Optional[List[Callable[["CredentialStore"], Optional[Resolution]]]] = None,
    ) -> None:
        self.config_path = Path(config_path) if config_path else default_config_path()
        self.resolvers = list(resolvers if resolvers is not None else DEFAULT_RESOLVERS)
        self.credential: Optional[Credential] = None
        self.source = ConfigSource.NOT_CONFIGURED

    @property
    def is_configured(self) -> bool:
        return self.credential is not None

    def load(self) -> ConfigSource:
        """Run the resolvers in order and keep the first credential found."""
        for resolver in self.resolvers:
            resolved = resolver(self)
            if resolved is not None:
                self.credential, self.source = resolved
                logger.info("Gemini credential loaded from %s", self.source.value)
                return self.source

        self.credential = None
        self.source = ConfigSource.NOT_CONFIGURED
        return self.source

    def configure(self, api_key: str, base_url: Optional[str] = None) -> Credential:
        """Validate, activate and persist an explicitly supplied credential.

        Raises:
            ValidationError: If the key is empty or the base URL is malformed.
            OSError: If the config file cannot be written.
        """
        credential = Credential(api_key=api_key, base_url=base_url)
        self.credential = credential
        self.source = ConfigSource.CONFIG_FILE
        self.save()
        return credential

    def save(self) -> None:
        """Rewrite the config file with the active credential."""
        if self.credential is None:
            return
        payload = json.dumps(self.credential.to_file_payload(), indent=2)
        self.config_path.write_text(payload, encoding="utf-8")


__all__ = [
    "API_KEY_ENV",
    "BASE_URL_ENV",
    "CONFIG_FILENAME",
    "ConfigSource",
    "Credential",
    "CredentialStore",
    "DEFAULT_RESOLVERS",
    "default_config_path",
    "prime_dotenv_env",
    "describe_validation_error",
    "resolve_from_config_file",
    "resolve_from_environment",
]
