#!/usr/bin/env python3
"""Exception types raised by infractl and caught once at the CLI boundary."""

from __future__ import annotations


class InfractlError(Exception):
    """Base class for operator-facing failures."""


class DependencyError(InfractlError):
    """A required command-line tool is not installed."""

    def __init__(self, missing: list[tuple[str, str]]):
        self.missing = missing
        names = ", ".join(name for name, _ in missing)
        super().__init__(f"Missing required dependencies: {names}")


class SettingsFileError(InfractlError):
    """The settings file is missing or unreadable."""


class TemplateMissingError(InfractlError):
    """A configuration template does not exist."""


class UnknownServiceError(InfractlError):
    """A service name or alias is not defined."""

    def __init__(self, name: str, available: list[str]):
        self.name = name
        self.available = available
        super().__init__(
            f"Unknown service: {name}. Available services: {', '.join(available)}"
        )


class CommandError(InfractlError):
    """An external command exited non-zero."""

    def __init__(self, cmd: list[str], returncode: int, stderr: str = ""):
        self.cmd = cmd
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"Command failed with exit code {returncode}: {' '.join(cmd)}")


class ConfigError(InfractlError):
    """The stack configuration is invalid."""


class TemplateRenderError(InfractlError):
    """A template exists but could not be parsed."""
