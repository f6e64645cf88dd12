#!/usr/bin/env python3
"""
Readiness probes and the operator health report.

Every probe returns an (ok, message) tuple. Probes never raise for an
unreachable service; they report it.
"""

from __future__ import annotations

import logging
import socket
from typing import Iterable, Optional, Tuple

import requests

from .config_schema import ReadinessCheck, ServiceDescriptor, StackConfig
from .console import GREEN, RED, RESET, YELLOW, error, header

logger = logging.getLogger(__name__)

ProbeResult = Tuple[bool, str]


def probe_command(compose, descriptor: ServiceDescriptor, check: ReadinessCheck) -> ProbeResult:
    """Run the readiness command inside the service container."""
    result = compose.exec(descriptor.compose_service, check.command, check=False)
    stdout = (result.stdout or '').strip()
    stderr = (result.stderr or '').strip()

    if result.returncode == 0 and (check.expect is None or stdout == check.expect):
        return True, stdout.splitlines()[-1] if stdout else "Ready"

    details = stdout or stderr or "Unknown error"
    return False, f"Not ready ({details})"


def probe_tcp(host: str, port: int, timeout: float = 5.0) -> ProbeResult:
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True, f"Port {port} accepting connections"
    except OSError as e:
        return False, f"Port {port} not reachable ({e})"


def probe_http(url: str, timeout: float = 5.0) -> ProbeResult:
    """Succeed on any non-error HTTP status."""
    try:
        response = requests.get(url, timeout=timeout)
    except requests.RequestException as e:
        return False, f"{url} unreachable ({e.__class__.__name__})"
    if response.status_code < 400:
        return True, f"HTTP {response.status_code}"
    return False, f"HTTP {response.status_code}"


def probe_running(compose, descriptor: ServiceDescriptor) -> ProbeResult:
    if compose.is_running(descriptor.compose_service):
        return True, "Running"
    return False, "Not running"


def probe_service(compose, descriptor: ServiceDescriptor) -> ProbeResult:
    """Dispatch to the probe matching the service's readiness kind."""
    check = descriptor.readiness
    if check is None or check.kind == "running":
        return probe_running(compose, descriptor)
    if check.kind == "command":
        return probe_command(compose, descriptor, check)
    if check.kind == "tcp":
        return probe_tcp(check.host, int(check.port), check.timeout)
    return probe_http(check.url, check.timeout)


def run_health_checks(compose, config: StackConfig, names: Optional[Iterable[str]] = None) -> bool:
    """
    Print a health line for every service and return overall success.

    Optional services (development profile) only produce a warning when they
    are not running. Nothing running at all is a failure.
    """
    header("Infrastructure health")

    running = compose.running_services()
    if not running:
        error("No services are running. Start them with: infractl start")
        return False

    descriptors = [config.service(n) for n in names] if names else list(config.services.values())
    all_ok = True

    for descriptor in descriptors:
        label = f"{descriptor.display_name}:".ljust(18)
        if descriptor.optional and descriptor.compose_service not in running:
            print(f"  {label} {YELLOW}⚠️  not running (optional){RESET}", flush=True)
            continue

        ok, msg = probe_service(compose, descriptor)
        logger.debug(f"{descriptor.name}: ok={ok} {msg}")
        if ok:
            print(f"  {label} {GREEN}✅ {msg}{RESET}", flush=True)
        elif descriptor.compose_service in running:
            print(f"  {label} {RED}❌ {msg} (container up){RESET}", flush=True)
            all_ok = False
        else:
            print(f"  {label} {RED}❌ not running{RESET}", flush=True)
            all_ok = False

    return all_ok
