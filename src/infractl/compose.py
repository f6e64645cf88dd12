#!/usr/bin/env python3
"""
Docker Compose driver.

Wraps `docker compose` (v2 plugin, or the v1 `docker-compose` binary when the
plugin is unavailable) and the handful of plain `docker` calls the toolkit
needs: container logs, volume removal and published ports.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import time
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence

import yaml

from .config_constants import DOCKER_COMPOSE_FILE
from .config_schema import ServiceDescriptor, StackConfig
from .console import info, success, warn
from .errors import CommandError, ConfigError, DependencyError
from .health import ProbeResult, probe_service

logger = logging.getLogger(__name__)

COMPOSE_INSTALL_URL = 'https://docs.docker.com/compose/install/'


def run_cmd(cmd, cwd=None, check=True, env=None, capture_output=True, text=True, timeout=None):
    """Run a command and return the result."""
    logger.debug(f"Running: {' '.join(cmd)}")
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=capture_output,
            text=text,
            env=env,
            timeout=timeout
        )
    except FileNotFoundError as e:
        raise DependencyError([(cmd[0], f"'{cmd[0]}' not found in PATH")]) from e
    if check and result.returncode != 0:
        stderr = (result.stderr or '').strip() if capture_output else ''
        raise CommandError(list(cmd), result.returncode, stderr)
    return result


def detect_compose_command() -> List[str]:
    """
    Return the compose invocation prefix.

    Raises:
        DependencyError: If neither `docker compose` nor `docker-compose` works
    """
    try:
        result = subprocess.run(
            ['docker', 'compose', 'version'],
            capture_output=True,
            text=True,
            timeout=5
        )
        if result.returncode == 0:
            return ['docker', 'compose']
    except (FileNotFoundError, subprocess.TimeoutExpired):
        pass

    legacy = shutil.which('docker-compose')
    if legacy:
        logger.debug(f"Using legacy compose binary: {legacy}")
        return ['docker-compose']

    raise DependencyError([('docker compose', COMPOSE_INSTALL_URL)])


def load_compose_services(compose_path: Path) -> Dict[str, dict]:
    """Return the `services` mapping of a compose file, or {} when absent."""
    if not compose_path.exists():
        return {}
    try:
        with open(compose_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {compose_path}: {e}") from e
    services = data.get('services') or {}
    if not isinstance(services, dict):
        return {}
    return services


class ComposeProject:
    """A compose project rooted at a stack directory."""

    def __init__(self, stack_dir: Path, compose_file: str = DOCKER_COMPOSE_FILE,
                 command: Optional[List[str]] = None):
        self.stack_dir = Path(stack_dir)
        self.compose_file = compose_file
        self._command = command
        self._services: Optional[Dict[str, dict]] = None

    @classmethod
    def from_config(cls, stack_dir: Path, config: StackConfig) -> "ComposeProject":
        return cls(stack_dir, config.compose_file)

    @property
    def command(self) -> List[str]:
        if self._command is None:
            self._command = detect_compose_command()
        return self._command

    @property
    def compose_path(self) -> Path:
        return self.stack_dir / self.compose_file

    def base_cmd(self, profiles: Sequence[str] = ()) -> List[str]:
        cmd = [*self.command, '-f', self.compose_file]
        for profile in profiles:
            cmd += ['--profile', profile]
        return cmd

    def run(self, args: Sequence[str], profiles: Sequence[str] = (), check: bool = True,
            capture_output: bool = False, timeout: Optional[float] = None) -> subprocess.CompletedProcess:
        return run_cmd(
            self.base_cmd(profiles) + list(args),
            cwd=self.stack_dir,
            check=check,
            capture_output=capture_output,
            timeout=timeout,
        )

    # Lifecycle -----------------------------------------------------------

    def up(self, services: Iterable[str] = (), profiles: Sequence[str] = ()):
        return self.run(['up', '-d', *services], profiles=profiles)

    def stop(self, services: Iterable[str] = ()):
        return self.run(['stop', *services])

    def down(self, volumes: bool = False):
        return self.run(['down', '-v'] if volumes else ['down'])

    def restart(self, services: Iterable[str] = ()):
        return self.run(['restart', *services])

    def rm(self, services: Iterable[str]):
        return self.run(['rm', '-f', *services], check=False)

    def pull(self):
        return self.run(['pull'])

    def ps(self, services: Iterable[str] = ()):
        return self.run(['ps', *services])

    def logs(self, services: Iterable[str] = (), follow: bool = False, tail: Optional[int] = None):
        args = ['logs']
        if follow:
            args.append('-f')
        if tail is not None:
            args += ['--tail', str(tail)]
        return self.run([*args, *services], check=False)

    def exec(self, service: str, command: Sequence[str], interactive: bool = False,
             check: bool = False) -> subprocess.CompletedProcess:
        """Run a command in a service container; non-interactive calls capture output."""
        args = ['exec'] if interactive else ['exec', '-T']
        return self.run([*args, service, *command], check=check, capture_output=not interactive)

    # Queries ---------------------------------------------------------------

    def running_services(self) -> set[str]:
        result = self.run(['ps', '--services', '--filter', 'status=running'],
                          check=False, capture_output=True)
        if result.returncode != 0:
            return set()
        return {line.strip() for line in result.stdout.splitlines() if line.strip()}

    def is_running(self, service: str) -> bool:
        return service in self.running_services()

    def container_for(self, descriptor: ServiceDescriptor) -> str:
        """Prefer the compose file's container_name over the configured one."""
        if self._services is None:
            self._services = load_compose_services(self.compose_path)
        definition = self._services.get(descriptor.compose_service) or {}
        return definition.get('container_name') or descriptor.container_name


# ============================================================================
# Plain docker helpers
# ============================================================================

def container_logs(container: str) -> str:
    """Return a container's combined stdout/stderr log, or '' if unavailable."""
    result = run_cmd(['docker', 'logs', container], check=False)
    if result.returncode != 0:
        logger.debug(f"docker logs {container} failed: {(result.stderr or '').strip()}")
        return ''
    return (result.stdout or '') + (result.stderr or '')


def container_running(container: str) -> bool:
    result = run_cmd(['docker', 'inspect', '--format={{.State.Running}}', container], check=False)
    return result.returncode == 0 and result.stdout.strip() == 'true'


def remove_volume(volume: str) -> bool:
    result = run_cmd(['docker', 'volume', 'rm', volume], check=False)
    if result.returncode != 0:
        warn(f"Volume {volume} not removed (may not exist)")
        return False
    success(f"Removed volume {volume}")
    return True


def container_port(container: str, port: int) -> Optional[int]:
    """Return the host port published for a container port, if any."""
    result = run_cmd(['docker', 'port', container, str(port)], check=False)
    if result.returncode != 0:
        return None
    for line in result.stdout.splitlines():
        host_port = line.strip().rsplit(':', 1)[-1]
        if host_port.isdigit():
            return int(host_port)
    return None


def follow_logs(container: str) -> Iterator[str]:
    """
    Yield log lines from `docker logs -f` until the stream ends.

    Raises:
        DependencyError: If docker is not installed
    """
    cmd = ['docker', 'logs', '-f', container]
    try:
        proc = subprocess.Popen(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            bufsize=1,
        )
    except FileNotFoundError as e:
        raise DependencyError([(cmd[0], f"'{cmd[0]}' not found in PATH")]) from e
    try:
        for line in proc.stdout or ():
            yield line.rstrip('\n')
    finally:
        if proc.poll() is None:
            proc.terminate()
            try:
                proc.wait(timeout=5)
            except subprocess.TimeoutExpired:
                proc.kill()


# ============================================================================
# Readiness
# ============================================================================

def wait_until_ready(label: str, check: Callable[[], ProbeResult], attempts: int = 30,
                     interval: float = 2, sleep: Callable[[float], None] = time.sleep) -> bool:
    """
    Poll a readiness check a fixed number of times at a fixed interval.

    Exhausting the attempts is a warning, never an error: the caller carries
    on with the rest of the start sequence.

    Returns:
        True if the check succeeded within the allotted attempts
    """
    info(f"Waiting for {label} to become ready...")
    msg = ''
    for attempt in range(1, attempts + 1):
        ok, msg = check()
        if ok:
            success(f"{label} is ready ({msg})")
            return True
        logger.debug(f"{label} attempt {attempt}/{attempts}: {msg}")
        if attempt < attempts:
            sleep(interval)

    warn(f"{label} not ready after {attempts} attempts ({msg}); continuing")
    return False


def start_services(compose: ComposeProject, config: StackConfig,
                   names: Optional[Iterable[str]] = None, profiles: Sequence[str] = ()) -> Dict[str, bool]:
    """
    Start services and wait for each one that declares a readiness check.

    With no names the whole stack (default profile) is started.

    Returns:
        Mapping of service name to readiness outcome
    """
    if names:
        descriptors = [config.service(n) for n in names]
        compose.up([d.compose_service for d in descriptors], profiles=profiles)
    else:
        descriptors = [d for d in config.services.values() if not d.profile or d.profile in profiles]
        compose.up(profiles=profiles)

    results: Dict[str, bool] = {}
    for descriptor in descriptors:
        if descriptor.readiness is None or descriptor.optional:
            continue
        results[descriptor.name] = wait_until_ready(
            descriptor.display_name,
            lambda d=descriptor: probe_service(compose, d),
            attempts=config.readiness_attempts,
            interval=config.readiness_interval,
        )
    return results
