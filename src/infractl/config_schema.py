#!/usr/bin/env python3
"""
Typed view of the merged infractl configuration.

The merged TOML dictionary (packaged defaults.toml plus the stack's
infractl.toml) is converted into these dataclasses once per invocation and
passed explicitly to every component.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional

from .config_constants import DOCKER_COMPOSE_FILE, SETTINGS_FILE, SETTINGS_TEMPLATE
from .errors import UnknownServiceError

ReadinessKind = Literal["command", "tcp", "http", "running"]
READINESS_KINDS = ("command", "tcp", "http", "running")


@dataclass
class ReadinessCheck:
    """How to decide that a service is accepting work."""
    kind: ReadinessKind = "running"
    command: List[str] = field(default_factory=list)
    expect: Optional[str] = None
    host: str = "localhost"
    port: Optional[int] = None
    url: Optional[str] = None
    timeout: float = 5.0

    def __post_init__(self):
        if self.kind not in READINESS_KINDS:
            raise ValueError(f"Unknown readiness kind: {self.kind!r} (expected one of {', '.join(READINESS_KINDS)})")
        if self.kind == "command" and not self.command:
            raise ValueError("readiness kind 'command' requires a command list")
        if self.kind == "tcp" and not self.port:
            raise ValueError("readiness kind 'tcp' requires a port")
        if self.kind == "http" and not self.url:
            raise ValueError("readiness kind 'http' requires a url")


@dataclass
class ServiceDescriptor:
    """A named service of the compose stack."""
    name: str
    compose_service: str
    container_name: str
    display_name: str
    aliases: List[str] = field(default_factory=list)
    readiness: Optional[ReadinessCheck] = None
    profile: Optional[str] = None
    optional: bool = False
    volume: Optional[str] = None
    capture_timeout: int = 30
    capture_delay: int = 5
    requires_certs: bool = False
    templates: List[str] = field(default_factory=list)
    urls: Dict[str, str] = field(default_factory=dict)

    def matches(self, name: str) -> bool:
        name = name.strip().lower()
        return name in (self.name, self.compose_service, *self.aliases)


@dataclass
class PasswordSpec:
    """A generated credential stored under one settings key."""
    name: str
    key: str
    length: int
    label: str = ""
    aliases: List[str] = field(default_factory=list)
    restart: str = ""
    mail_account: Optional[str] = None

    def __post_init__(self):
        if self.length < 1:
            raise ValueError(f"passwords.{self.name}.length must be positive")
        if not self.label:
            self.label = self.key


@dataclass
class TemplateSpec:
    """A ${NAME} template rendered from settings values."""
    name: str
    source: str
    target: str
    defaults: Dict[str, str] = field(default_factory=dict)


@dataclass
class CaptureConfig:
    start_marker: str = "RUSTCARE_INIT_PASSWORDS_START"
    end_marker: str = "RUSTCARE_INIT_PASSWORDS_END"
    password_suffix: str = "_PASSWORD"
    poll_interval: float = 1.0
    extract_timeout: int = 10
    order: List[str] = field(default_factory=list)
    temp_files: List[str] = field(default_factory=list)
    routes: Dict[str, List[str]] = field(default_factory=dict)

    def destination_keys(self) -> List[str]:
        keys: List[str] = []
        for targets in self.routes.values():
            for key in targets:
                if key not in keys:
                    keys.append(key)
        return keys


@dataclass
class StackConfig:
    """Complete configuration for one stack directory."""
    project_name: str
    compose_file: str = DOCKER_COMPOSE_FILE
    settings_file: str = SETTINGS_FILE
    settings_template: str = SETTINGS_TEMPLATE
    volume_prefix: str = ""
    log_level: str = "INFO"
    engine_dir: Optional[str] = None

    readiness_attempts: int = 30
    readiness_interval: float = 2.0

    capture: CaptureConfig = field(default_factory=CaptureConfig)
    services: Dict[str, ServiceDescriptor] = field(default_factory=dict)
    passwords: Dict[str, PasswordSpec] = field(default_factory=dict)
    templates: Dict[str, TemplateSpec] = field(default_factory=dict)

    # Loosely-typed sections consumed by a single module each
    bootstrap: Dict[str, Any] = field(default_factory=dict)
    mail: Dict[str, Any] = field(default_factory=dict)
    engine: Dict[str, Any] = field(default_factory=dict)
    install: Dict[str, Any] = field(default_factory=dict)

    def service(self, name: str) -> ServiceDescriptor:
        """Resolve a service by name, compose service name, or alias."""
        for descriptor in self.services.values():
            if descriptor.matches(name):
                return descriptor
        raise UnknownServiceError(name, list(self.services))

    def password(self, name: str) -> PasswordSpec:
        lowered = name.strip().lower()
        for spec in self.passwords.values():
            if lowered == spec.name or lowered in spec.aliases:
                return spec
        raise UnknownServiceError(name, list(self.passwords))

    def volume_name(self, descriptor: ServiceDescriptor, stack_dir) -> str:
        prefix = self.volume_prefix or stack_dir.name.lower()
        return f"{prefix}_{descriptor.volume}"

    @property
    def placeholders(self) -> List[str]:
        return list(self.bootstrap.get('placeholders', []))

    def secret_keys(self) -> List[str]:
        """Settings keys holding credentials, in display order."""
        keys = [spec.key for spec in self.passwords.values()]
        for key in self.capture.destination_keys():
            if key not in keys:
                keys.append(key)
        return keys


def _parse_service(name: str, raw: Dict[str, Any]) -> ServiceDescriptor:
    readiness_raw = raw.get('readiness')
    readiness = ReadinessCheck(**readiness_raw) if readiness_raw else None
    return ServiceDescriptor(
        name=name,
        compose_service=raw.get('compose_service', name),
        container_name=raw.get('container_name', name),
        display_name=raw.get('display_name', name),
        aliases=[a.lower() for a in raw.get('aliases', [])],
        readiness=readiness,
        profile=raw.get('profile'),
        optional=bool(raw.get('optional', False)),
        volume=raw.get('volume'),
        capture_timeout=int(raw.get('capture_timeout', 30)),
        capture_delay=int(raw.get('capture_delay', 5)),
        requires_certs=bool(raw.get('requires_certs', False)),
        templates=list(raw.get('templates', [])),
        urls=dict(raw.get('urls', {})),
    )


def parse_stack_config(data: Dict[str, Any]) -> StackConfig:
    """
    Convert a merged configuration dictionary into a StackConfig.

    Raises:
        ValueError: If a required field is missing or has an invalid value
    """
    stack = data.get('stack', {})
    if not stack.get('project_name'):
        raise ValueError("Missing required field: stack.project_name")

    readiness = data.get('readiness', {})
    capture_raw = dict(data.get('capture', {}))
    capture = CaptureConfig(
        **{k: v for k, v in capture_raw.items() if k in CaptureConfig.__dataclass_fields__}
    )

    services = {name: _parse_service(name, raw) for name, raw in data.get('services', {}).items()}

    passwords = {}
    for name, raw in data.get('passwords', {}).items():
        if 'key' not in raw or 'length' not in raw:
            raise ValueError(f"passwords.{name} requires 'key' and 'length'")
        passwords[name] = PasswordSpec(name=name, **raw)

    templates = {}
    for name, raw in data.get('templates', {}).items():
        if 'source' not in raw or 'target' not in raw:
            raise ValueError(f"templates.{name} requires 'source' and 'target'")
        templates[name] = TemplateSpec(
            name=name,
            source=raw['source'],
            target=raw['target'],
            defaults={k: str(v) for k, v in raw.get('defaults', {}).items()},
        )

    for descriptor in services.values():
        for template_name in descriptor.templates:
            if template_name not in templates:
                raise ValueError(f"services.{descriptor.name} references unknown template {template_name!r}")

    return StackConfig(
        project_name=stack['project_name'],
        compose_file=stack.get('compose_file', DOCKER_COMPOSE_FILE),
        settings_file=stack.get('settings_file', SETTINGS_FILE),
        settings_template=stack.get('settings_template', SETTINGS_TEMPLATE),
        volume_prefix=stack.get('volume_prefix', ''),
        log_level=stack.get('log_level', 'INFO'),
        engine_dir=stack.get('engine_dir') or None,
        readiness_attempts=int(readiness.get('attempts', 30)),
        readiness_interval=float(readiness.get('interval', 2)),
        capture=capture,
        services=services,
        passwords=passwords,
        templates=templates,
        bootstrap=dict(data.get('bootstrap', {})),
        mail=dict(data.get('mail', {})),
        engine=dict(data.get('engine', {})),
        install=dict(data.get('install', {})),
    )
