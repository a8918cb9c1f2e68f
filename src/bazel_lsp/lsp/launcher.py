"""
Process Launcher - resolves the server executable and spawns it over stdio.
"""

import logging
import os
import shutil
import subprocess
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, IO

import psutil

from bazel_lsp.lsp.errors import LaunchError, LaunchErrorKind

logger = logging.getLogger(__name__)


@dataclass
class ProcessOptions:
    """Options passed through to the spawned server process."""

    env: Dict[str, str] = field(default_factory=dict)
    cwd: Optional[str] = None
    debug: bool = False
    debug_args: List[str] = field(default_factory=list)  # Only used when debug is set

    def build_env(self) -> Dict[str, str]:
        env = dict(os.environ)
        env.update(self.env)
        return env


class ProcessHandle:
    """A running server process with its stdio streams."""

    def __init__(self, process: subprocess.Popen, command: List[str]):
        self._process = process
        self.command = command
        self._stderr_thread = threading.Thread(
            target=self._drain_stderr, name=f"lsp-stderr-{process.pid}", daemon=True
        )
        self._stderr_thread.start()

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def stdin(self) -> IO[bytes]:
        return self._process.stdin

    @property
    def stdout(self) -> IO[bytes]:
        return self._process.stdout

    @property
    def returncode(self) -> Optional[int]:
        return self._process.poll()

    @property
    def is_alive(self) -> bool:
        return self._process.poll() is None

    def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        """Wait for exit, returning the exit code or None on timeout."""
        try:
            return self._process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return None

    def terminate(self, timeout: float = 5.0):
        """Terminate the process and any children it spawned, killing if needed."""
        if self.is_alive:
            self._terminate_children(timeout)
            logger.info(f"Terminating language server (pid {self.pid})")
            self._process.terminate()
            if self.wait(timeout) is None:
                logger.warning(f"Language server (pid {self.pid}) ignored SIGTERM, killing")
                self._process.kill()
                self._process.wait()
        self._close_streams()

    def _terminate_children(self, timeout: float):
        try:
            children = psutil.Process(self.pid).children(recursive=True)
        except psutil.NoSuchProcess:
            return

        for child in children:
            try:
                child.terminate()
            except psutil.NoSuchProcess:
                pass

        _, alive = psutil.wait_procs(children, timeout=timeout)
        for child in alive:
            try:
                child.kill()
            except psutil.NoSuchProcess:
                pass

    def _close_streams(self):
        for stream in (self._process.stdin, self._process.stdout):
            if stream is None:
                continue
            try:
                stream.close()
            except OSError:
                pass

    def _drain_stderr(self):
        """Forward server stderr to the log so the pipe never fills up."""
        stream = self._process.stderr
        if stream is None:
            return
        try:
            for raw in iter(stream.readline, b""):
                line = raw.decode("utf-8", errors="replace").rstrip()
                if line:
                    logger.debug(f"[server stderr] {line}")
        except (OSError, ValueError):
            pass
        finally:
            stream.close()


def resolve_executable(executable: str, install_root: Optional[str] = None) -> str:
    """
    Resolve the server executable to an absolute path.

    Paths (anything containing a separator) are taken relative to install_root;
    bare names are looked up on PATH.

    Raises:
        LaunchError: NOT_FOUND if nothing exists there, PERMISSION_DENIED if
            the file is not executable.
    """
    if not executable:
        raise LaunchError(LaunchErrorKind.NOT_FOUND, executable, "empty executable path")

    expanded = os.path.expanduser(executable)
    is_path = os.path.isabs(expanded) or os.sep in expanded or "/" in expanded

    if is_path:
        path = Path(expanded)
        if not path.is_absolute() and install_root:
            path = Path(install_root) / path
        path = path.resolve()
    else:
        found = shutil.which(expanded)
        if found is None:
            raise LaunchError(LaunchErrorKind.NOT_FOUND, executable, "not found on PATH")
        path = Path(found)

    if not path.exists():
        raise LaunchError(LaunchErrorKind.NOT_FOUND, executable, str(path))
    if path.is_dir() or not os.access(path, os.X_OK):
        raise LaunchError(LaunchErrorKind.PERMISSION_DENIED, executable, str(path))
    return str(path)


def launch(
    executable: str,
    args: Optional[List[str]] = None,
    options: Optional[ProcessOptions] = None,
    install_root: Optional[str] = None,
) -> ProcessHandle:
    """
    Spawn the language server with stdio pipes.

    Args:
        executable: Server executable (absolute, install-root relative, or on PATH)
        args: Command line arguments
        options: Environment overrides, working directory and debug flags
        install_root: Directory relative executable paths are resolved against

    Returns:
        ProcessHandle for the running server

    Raises:
        LaunchError: The executable is missing, not executable, or failed to spawn
    """
    options = options or ProcessOptions()
    command = [resolve_executable(executable, install_root)] + list(args or [])
    if options.debug:
        command += options.debug_args

    logger.info(f"Starting language server: {' '.join(command)}")

    try:
        process = subprocess.Popen(
            command,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=options.cwd,
            env=options.build_env(),
        )
    except FileNotFoundError as e:
        raise LaunchError(LaunchErrorKind.NOT_FOUND, executable, str(e)) from e
    except PermissionError as e:
        raise LaunchError(LaunchErrorKind.PERMISSION_DENIED, executable, str(e)) from e
    except OSError as e:
        raise LaunchError(LaunchErrorKind.SPAWN_FAILED, executable, str(e)) from e

    return ProcessHandle(process, command)
