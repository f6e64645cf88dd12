#!/usr/bin/env python3
"""
Credential capture from service logs.

Some services generate credentials on first start and print them between two
sentinel lines:

    RUSTCARE_INIT_PASSWORDS_START
    RUSTCARE_PASSWORD=...
    STALWART_PASSWORD=...
    RUSTCARE_INIT_PASSWORDS_END

This module polls a container's logs for such a block, routes the keys to
their settings names and writes them to the settings file. A service whose
first-run path already completed prints nothing, so capture then times out
with a warning and changes nothing.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from .compose import ComposeProject, container_logs, container_running, follow_logs, run_cmd
from .config_schema import CaptureConfig, ServiceDescriptor, StackConfig
from .console import GREEN, RESET, YELLOW, header, info, success, warn
from .errors import UnknownServiceError
from .render_utils import process_templates
from .settings import SettingsFile, parse_line

logger = logging.getLogger(__name__)

Pairs = List[Tuple[str, str]]


def extract_credential_block(log_text: str, start_marker: str, end_marker: str) -> Optional[Pairs]:
    """
    Return the KEY=value pairs of the last complete sentinel block, in order.

    Lines without '=' are ignored. Returns None when no start marker is
    followed by an end marker.
    """
    lines = log_text.splitlines()
    block: Optional[Pairs] = None
    current: Optional[Pairs] = None

    for line in lines:
        stripped = line.strip()
        if start_marker in stripped:
            current = []
            continue
        if end_marker in stripped:
            if current is not None:
                block = current
            current = None
            continue
        if current is not None:
            parsed = parse_line(stripped)
            if parsed is not None:
                current.append(parsed)

    return block


def route_credentials(pairs: Sequence[Tuple[str, str]], routes: Mapping[str, Sequence[str]],
                      suffix: str = '_PASSWORD') -> Dict[str, str]:
    """
    Map captured keys to settings keys.

    Routed keys fan out to every destination. Unrouted keys ending in the
    password suffix pass through when non-empty; everything else is dropped.
    """
    updates: Dict[str, str] = {}
    for key, value in pairs:
        if not value:
            continue
        if key in routes:
            for destination in routes[key]:
                updates[destination] = value
        elif key.endswith(suffix):
            updates[key] = value
        else:
            logger.debug(f"Ignoring captured key {key}")
    return updates


def capture_from_logs(container: str, settings: SettingsFile, capture: CaptureConfig, timeout: float,
                      read_logs: Callable[[str], str] = container_logs,
                      sleep: Callable[[float], None] = time.sleep,
                      clock: Callable[[], float] = time.monotonic) -> bool:
    """
    Poll a container's logs until a credential block appears or the timeout elapses.

    Returns:
        True if credentials were captured and written, False on timeout
    """
    info(f"Waiting for password markers in {container} logs (timeout: {timeout}s)...")
    deadline = clock() + timeout

    while True:
        pairs = extract_credential_block(read_logs(container), capture.start_marker, capture.end_marker)
        if pairs is not None:
            updates = route_credentials(pairs, capture.routes, capture.password_suffix)
            if updates:
                settings.update(updates)
                for key in updates:
                    success(f"Captured {key}")
            else:
                warn(f"Password block in {container} logs held no password keys")
            return True
        if clock() >= deadline:
            break
        sleep(capture.poll_interval)

    warn(f"No password markers found in {container} logs within {timeout}s")
    warn("Credentials may already have been generated on an earlier start; "
         "settings are unchanged and may be stale (reset the volume to regenerate)")
    return False


def capture_temp_files(settings: SettingsFile, capture: CaptureConfig) -> Dict[str, str]:
    """Merge leftover /tmp/*-passwords.env files into settings and delete them."""
    merged: Dict[str, str] = {}
    for name in capture.temp_files:
        path = Path(name)
        if not path.exists():
            continue
        pairs = []
        for line in path.read_text(encoding='utf-8').splitlines():
            parsed = parse_line(line)
            if parsed is not None:
                pairs.append(parsed)
        updates = route_credentials(pairs, capture.routes, capture.password_suffix)
        if updates:
            settings.update(updates)
            merged.update(updates)
        path.unlink()
        info(f"Merged and removed {path}")
    return merged


def _prepare_service(descriptor: ServiceDescriptor, config: StackConfig, settings: SettingsFile,
                     stack_dir: Path) -> None:
    """Certificates and templates a service needs before its first start."""
    if descriptor.requires_certs:
        ensure_certificates(config, stack_dir)
    if descriptor.templates:
        process_templates(config, settings, stack_dir, descriptor.templates)


def ensure_certificates(config: StackConfig, stack_dir: Path) -> None:
    """Run the external certificate script when the certificate is missing."""
    marker = stack_dir / config.bootstrap.get('certs_marker', 'certs/cert.pem')
    script = stack_dir / config.bootstrap.get('certs_script', 'certs/generate-certs.sh')
    if marker.exists():
        return
    if not script.exists():
        warn(f"Certificate {marker.relative_to(stack_dir)} missing and no {script.name} to generate it")
        return
    info("Generating TLS certificates...")
    run_cmd(['bash', str(script)], cwd=script.parent, capture_output=False)


def start_service_with_capture(compose: ComposeProject, config: StackConfig, settings: SettingsFile,
                               stack_dir: Path, name: str,
                               sleep: Callable[[float], None] = time.sleep) -> bool:
    """Recreate one service container and capture the credentials it prints."""
    descriptor = config.service(name)
    header(f"Starting {descriptor.display_name} with password capture")

    _prepare_service(descriptor, config, settings, stack_dir)
    compose.stop([descriptor.compose_service])
    compose.rm([descriptor.compose_service])
    compose.up([descriptor.compose_service])
    sleep(descriptor.capture_delay)

    return capture_from_logs(compose.container_for(descriptor), settings, config.capture,
                             descriptor.capture_timeout, sleep=sleep)


def capture_target(config: StackConfig, target: str) -> ServiceDescriptor:
    """
    Resolve a capture target by name or alias.

    Raises:
        UnknownServiceError: If the name is not one of the capture services
    """
    for name in config.capture.order:
        descriptor = config.services.get(name)
        if descriptor is not None and descriptor.matches(target):
            return descriptor
    raise UnknownServiceError(target, list(config.capture.order))


def start_with_capture(compose: ComposeProject, config: StackConfig, settings: SettingsFile,
                       stack_dir: Path, target: str = 'all',
                       sleep: Callable[[float], None] = time.sleep) -> Dict[str, bool]:
    """
    Start one capture service, or `all` of them in order followed by the rest
    of the stack, then merge any temporary password files.
    """
    if target == 'all':
        names = list(config.capture.order)
    else:
        names = [capture_target(config, target).name]

    results = {}
    for name in names:
        results[name] = start_service_with_capture(compose, config, settings, stack_dir, name, sleep=sleep)

    if target == 'all':
        info("Starting remaining services...")
        compose.up()

    capture_temp_files(settings, config.capture)
    return results


def extract_existing(compose: ComposeProject, config: StackConfig, settings: SettingsFile) -> Dict[str, bool]:
    """Capture from every running capture service without restarting it."""
    header("Extracting passwords from running containers")
    results = {}
    for name in config.capture.order:
        descriptor = config.service(name)
        container = compose.container_for(descriptor)
        if not container_running(container):
            warn(f"{container} is not running; skipping")
            continue
        results[name] = capture_from_logs(container, settings, config.capture, config.capture.extract_timeout)
    capture_temp_files(settings, config.capture)
    return results


def highlight_line(line: str, capture: CaptureConfig) -> str:
    if capture.start_marker in line or capture.end_marker in line:
        return f"{YELLOW}{line}{RESET}"
    if 'PASSWORD' in line.upper():
        return f"{GREEN}{line}{RESET}"
    return line


def monitor(container: str, capture: CaptureConfig) -> None:
    """Follow a container's logs, highlighting sentinel and password lines."""
    info(f"Monitoring {container} logs (Ctrl+C to stop)...")
    for line in follow_logs(container):
        print(highlight_line(line, capture), flush=True)
