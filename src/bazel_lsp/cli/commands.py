"""
CLI commands for the Bazel language client.

Main entry point: `bazel-lsp run WORKSPACE` starts a session against a workspace.
"""

import sys
import threading
from pathlib import Path
from typing import Optional, Tuple

import click
from dotenv import load_dotenv

from bazel_lsp.cli import ui
from bazel_lsp.config import Config
from bazel_lsp.lsp.config import ServerConfig, load_server_config
from bazel_lsp.lsp.document_router import TextDocument
from bazel_lsp.lsp.errors import LaunchError, StartupError
from bazel_lsp.lsp.protocol import path_to_uri
from bazel_lsp.lsp.session import Session, SessionState
from bazel_lsp.lsp.watcher import WatchdogWatcherHost
from bazel_lsp.utils.logger import logger as client_log

STARLARK_SUFFIXES = (".bzl", ".star", ".sky")


def guess_language_id(path: str) -> str:
    """Language id an editor would give the file."""
    return "starlark" if Path(path).suffix in STARLARK_SUFFIXES else "plaintext"


def _load_config(ctx: click.Context) -> ServerConfig:
    settings: Config = ctx.obj
    return load_server_config(settings.config_file, settings.install_root)


@click.group()
@click.option(
    "--config",
    "config_file",
    default=None,
    type=click.Path(exists=True, dir_okay=False),
    help="JSON file with server settings",
)
@click.option(
    "--install-root",
    default=None,
    type=click.Path(file_okay=False),
    help="Directory relative server paths are resolved against",
)
@click.option("--log-level", default=None, help="DEBUG, INFO, WARNING or ERROR")
@click.option("--log-dir", default=None, help="Write per-level log files here")
@click.option("--json-logs", is_flag=True, help="Log as JSON lines")
@click.pass_context
def main(ctx, config_file, install_root, log_level, log_dir, json_logs):
    """
    bazel-lsp - client for the Bazel language server

    Usage:
        bazel-lsp run ~/src/myrepo                      # Run a session, watch files
        bazel-lsp check ~/src/myrepo                    # Handshake smoke test
        bazel-lsp match file:///repo/pkg/BUILD -l plaintext
        bazel-lsp config
    """
    load_dotenv()

    settings = Config()
    if config_file:
        settings.config_file = config_file
    if install_root:
        settings.install_root = install_root
    if log_level:
        settings.log_level = log_level.upper()
    if log_dir:
        settings.log_dir = log_dir
    if json_logs:
        settings.json_logs = True

    client_log.configure(
        level=settings.log_level,
        log_dir=settings.log_dir,
        json_mode=settings.json_logs,
    )
    ctx.obj = settings


@main.command()
@click.pass_context
def config(ctx):
    """Show the resolved server configuration."""
    ui.show_config(_load_config(ctx))


@main.command()
@click.argument("uri")
@click.option("--language", "-l", default=None, help="Language id of the document")
@click.option(
    "--workspace",
    "-w",
    default=None,
    type=click.Path(file_okay=False),
    help="Workspace root the patterns are anchored to",
)
@click.pass_context
def match(ctx, uri: str, language: Optional[str], workspace: Optional[str]):
    """Check whether a document URI (or path) is served by the session."""
    if "://" not in uri:
        uri = path_to_uri(uri)
    server_config = _load_config(ctx)
    document = TextDocument(uri=uri, language_id=language)

    root = str(Path(workspace).resolve()) if workspace else None
    if ui.show_match(document, server_config.selector, root):
        ui.print_success("In scope")
        sys.exit(0)
    ui.print_warning("Not in scope")
    sys.exit(1)


@main.command()
@click.argument("workspace", type=click.Path(exists=True, file_okay=False))
@click.pass_context
def check(ctx, workspace: str):
    """Start the server, complete the handshake and shut it down again."""
    session = Session(_load_config(ctx), workspace, host=ui.ConsoleHost())

    try:
        session.start()
    except (LaunchError, StartupError):
        # The host has already shown the error
        sys.exit(1)

    ui.show_capabilities(session.name, session.server_capabilities)
    session.stop().result()
    if session.shutdown_error is not None:
        ui.print_warning(f"Server did not shut down cleanly: {session.shutdown_error}")
        sys.exit(1)
    ui.print_success(f"{session.name} started and stopped cleanly")


@main.command()
@click.argument("workspace", type=click.Path(exists=True, file_okay=False))
@click.option(
    "--open",
    "open_files",
    multiple=True,
    type=click.Path(exists=True, dir_okay=False),
    help="Open this file in the session (repeatable)",
)
@click.pass_context
def run(ctx, workspace: str, open_files: Tuple[str, ...]):
    """Run a session on WORKSPACE until interrupted."""
    watcher = WatchdogWatcherHost(workspace)
    session = Session(_load_config(ctx), workspace, host=ui.ConsoleHost(), watcher_host=watcher)

    try:
        session.start()
    except (LaunchError, StartupError):
        sys.exit(1)

    ui.print_success(f"{session.name} running (pid {session.process.pid})")

    for path in open_files:
        document = TextDocument(
            uri=path_to_uri(path),
            language_id=guess_language_id(path),
            version=1,
            text=Path(path).read_text(encoding="utf-8"),
        )
        if not session.did_open(document):
            ui.print_warning(f"{path} is not served by {session.name}")

    stopped = threading.Event()

    def on_state(old, new):
        if new == SessionState.STOPPED:
            stopped.set()

    session.add_state_listener(on_state)

    try:
        while not stopped.wait(0.5):
            pass
        ui.print_error(f"{session.name} stopped unexpectedly")
        sys.exit(1)
    except KeyboardInterrupt:
        ui.print_warning("Interrupted by user, shutting down")
        session.stop().result()
        sys.exit(130)
