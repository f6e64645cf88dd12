#!/usr/bin/env python3
"""
infractl CLI entry point.

Usage:
    infractl <command> [argument] [argument]

Commands:
    setup                         Create .env (and infractl.toml) and offer password generation
    check                         Check tools, settings file and sibling projects
    start | stop | restart        Stack lifecycle
    status                        docker compose ps
    logs [follow|SERVICE]         Recent logs, follow all, or one service
    clean                         Remove containers and volumes (asks first)
    update                        Pull images and recreate containers
    health                        Readiness report for every service
    urls                          Print service URLs
    db {start,stop,reset,connect,test}
    cache {start,stop,reset,connect}
    storage {start,stop,console}
    mail {start,stop,logs,admin,dev}
    passwords {generate,reset SERVICE,show,backup}
    capture {start [SERVICE],extract,show,monitor CONTAINER}
    templates                     Render configuration templates from .env
    engine-env                    Generate the engine's .env and JWT keys
    install | uninstall           systemd unit management (root)

Environment:
    INFRACTL_DIR          Stack directory (default: current directory)
    INFRACTL_LOG_LEVEL    DEBUG, INFO, WARNING or ERROR
    INFRACTL_ASSUME_YES   1 to answer yes to confirmation prompts
    SKIP_DEPENDENCY_CHECK 1 to skip the docker/compose presence check
"""

from __future__ import annotations

import argparse
import os
import sys
import traceback
from typing import Callable, Dict, NamedTuple, Optional

from . import operations
from .bootstrap import check_runtime_dependencies
from .cli_utils import assume_yes, get_cli_version, resolve_stack_dir
from .config import load_stack_config
from .console import RED, RESET, YELLOW, configure_logging, error
from .errors import InfractlError


class Command(NamedTuple):
    handler: Callable
    help: str
    needs_docker: bool = True
    actions: tuple = ()


COMMANDS: Dict[str, Command] = {
    'setup': Command(operations.cmd_setup, "create the settings file and offer password generation", False),
    'check': Command(operations.cmd_check, "check tools, settings file and sibling projects", False),
    'start': Command(operations.cmd_start, "start the stack (capturing first-run credentials)"),
    'stop': Command(operations.cmd_stop, "stop and remove containers"),
    'restart': Command(operations.cmd_restart, "restart all services"),
    'status': Command(operations.cmd_status, "show container status"),
    'logs': Command(operations.cmd_logs, "show logs: 'follow' or a service name"),
    'clean': Command(operations.cmd_clean, "remove containers and volumes"),
    'update': Command(operations.cmd_update, "pull images and recreate containers"),
    'health': Command(operations.cmd_health, "run readiness checks"),
    'urls': Command(operations.cmd_urls, "print service URLs", False),
    'db': Command(operations.cmd_db, "PostgreSQL operations", True,
                  ('start', 'stop', 'reset', 'connect', 'test')),
    'cache': Command(operations.cmd_cache, "Redis operations", True,
                     ('start', 'stop', 'reset', 'connect')),
    'storage': Command(operations.cmd_storage, "MinIO operations", True,
                       ('start', 'stop', 'console')),
    'mail': Command(operations.cmd_mail, "mail server operations", True,
                    ('start', 'stop', 'logs', 'admin', 'dev')),
    'passwords': Command(operations.cmd_passwords, "generate, reset, show or back up passwords", False,
                         ('generate', 'reset', 'show', 'backup')),
    'capture': Command(operations.cmd_capture, "capture credentials from service logs", True,
                       ('start', 'extract', 'show', 'monitor')),
    'templates': Command(operations.cmd_templates, "render configuration templates", False),
    'engine-env': Command(operations.cmd_engine_env, "generate the engine .env and JWT keys"),
    'install': Command(operations.cmd_install, "install the stack as a systemd unit"),
    'uninstall': Command(operations.cmd_uninstall, "remove the systemd unit and stop the stack"),
}

# (command, action) pairs whose second argument is mandatory
REQUIRES_TARGET = {
    ('passwords', 'reset'): 'SERVICE',
    ('capture', 'monitor'): 'CONTAINER',
}

# (command, action) pairs that never talk to docker
NO_DOCKER_ACTIONS = {('capture', 'show')}


class InfractlArgumentParser(argparse.ArgumentParser):
    """Print usage to stderr and exit 1 on any usage error."""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def build_parser() -> InfractlArgumentParser:
    parser = InfractlArgumentParser(
        prog='infractl',
        description="Install and operate the infrastructure compose stack",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument('--version', action='version', version=f"%(prog)s {get_cli_version()}")
    subparsers = parser.add_subparsers(dest='command', metavar='COMMAND', required=True)

    for name, command in COMMANDS.items():
        sub = subparsers.add_parser(name, help=command.help, description=command.help)
        if command.actions:
            sub.add_argument('action', choices=command.actions)
            if name in ('passwords', 'capture'):
                sub.add_argument('service', nargs='?', default=None,
                                 help="service name (reset, start) or container (monitor)")
        elif name == 'logs':
            sub.add_argument('target', nargs='?', default=None, help="'follow' or a service name")

    return parser


def parse_arguments(argv: Optional[list] = None) -> argparse.Namespace:
    parser = build_parser()
    args = parser.parse_args(argv)
    action = getattr(args, 'action', None)
    missing = REQUIRES_TARGET.get((args.command, action))
    if missing and not args.service:
        parser.error(f"{args.command} {action} requires a {missing} argument")
    return args


def run(args: argparse.Namespace) -> int:
    stack_dir = resolve_stack_dir()
    config = load_stack_config(stack_dir)
    configure_logging(os.getenv('INFRACTL_LOG_LEVEL') or config.log_level)

    command = COMMANDS[args.command]
    if command.needs_docker and (args.command, getattr(args, 'action', None)) not in NO_DOCKER_ACTIONS:
        check_runtime_dependencies(config.bootstrap.get('required_tools'))

    ctx = operations.StackContext(stack_dir=stack_dir, config=config, assume_yes=assume_yes())
    return command.handler(ctx, args)


def main(argv: Optional[list] = None) -> int:
    args = parse_arguments(argv)
    try:
        return run(args)
    except KeyboardInterrupt:
        print(f"\n{YELLOW}[INTERRUPTED]{RESET} Interrupted by user")
        return 130
    except InfractlError as e:
        error(str(e))
        return 1
    except Exception as e:
        print(f"{RED}[FATAL]{RESET} Unexpected error: {e}", file=sys.stderr)
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
