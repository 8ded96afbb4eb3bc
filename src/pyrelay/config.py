"""Configuration management for pyrelay."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Literal

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from pyrelay.errors import ConfigurationError
from pyrelay.locator import DEFAULT_CELL_BOUNDARY_REGEXP, DEFAULT_CODECELL_BEGINNING_REGEXP
from pyrelay.prompt import DEFAULT_PROMPT_REGEXP

DIRECTORY_MODES = ("project-root", "current-directory")

EchoOutput = bool | Literal["when-shell-not-visible"]


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="PYRELAY_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Interpreter
    interpreter: str = Field(default="python3", description="Interpreter executable name or path")
    interpreter_args: list[str] = Field(default_factory=lambda: ["-i", "-q", "-u"])
    starting_directory: str = Field(
        default="project-root",
        description="'project-root', 'current-directory' or an existing directory",
    )
    dedicated: bool = Field(default=False, description="One private session per source")
    prompt_regexp: str = Field(default=DEFAULT_PROMPT_REGEXP)
    encoding: str = Field(default="utf-8")

    # Readiness polling
    ready_timeout: float = Field(default=3.0, ge=0)
    poll_interval: float = Field(default=0.1, gt=0)

    # Echo
    echo_input: bool = True
    echo_output: EchoOutput = "when-shell-not-visible"
    echo_input_lines_head: int = Field(default=10, ge=0)
    echo_input_lines_tail: int = Field(default=10, ge=0)

    # Cells
    cell_boundary_regexp: str = DEFAULT_CELL_BOUNDARY_REGEXP
    codecell_beginning_regexp: str = DEFAULT_CODECELL_BEGINNING_REGEXP

    # Logging
    log_level: str = Field(default="INFO", description="Log level")

    @field_validator("starting_directory")
    @classmethod
    def _check_directory_mode(cls, value: str) -> str:
        if value in DIRECTORY_MODES:
            return value
        if not value.strip():
            raise ValueError(f"starting_directory must be one of {DIRECTORY_MODES} or a directory path")
        return value

    @field_validator("prompt_regexp", "cell_boundary_regexp", "codecell_beginning_regexp")
    @classmethod
    def _check_regexp(cls, value: str) -> str:
        try:
            re.compile(value)
        except re.error as exc:
            raise ValueError(f"invalid regular expression {value!r}: {exc}") from exc
        return value


def load_settings(workspace: Path | None = None, **overrides: object) -> Settings:
    """Build validated settings, reading ``.env`` from ``workspace`` when given.

    Raises:
        ConfigurationError: when a value fails validation.
    """

    kwargs: dict[str, object] = dict(overrides)
    if workspace is not None:
        kwargs["_env_file"] = workspace / ".env"
    try:
        return Settings(**kwargs)
    except ValidationError as exc:
        raise ConfigurationError(str(exc)) from exc
