"""
Sandbox abstraction for the project file tree the pipeline builds into.
Supports the local filesystem (default) and an in-memory tree for dry runs and tests.
"""

import logging
import os
import signal
import subprocess
import threading
from abc import ABC, abstractmethod
from typing import Dict, Iterator, List, Optional, Tuple

logger = logging.getLogger(__name__)

# Directories never reported by list_files
IGNORED_DIRS = {".git", "node_modules", "__pycache__", ".venv", "venv", "dist", "build", ".next"}


class SandboxError(Exception):
    """Raised when a sandbox operation fails"""
    pass


class SandboxNotFound(SandboxError, FileNotFoundError):
    """Raised by read_file/remove_file when the path does not exist"""
    pass


class SpawnedProcess(ABC):
    """A running command: iterate output chunks, then wait for the exit code."""

    @property
    @abstractmethod
    def output(self) -> Iterator[str]:
        """Yield output chunks (stdout and stderr interleaved) until the process ends."""

    @abstractmethod
    def wait(self, timeout: Optional[float] = None) -> int:
        """Block until the process exits. Returns the exit code."""

    def kill(self) -> None:
        """Terminate the process, if it is still running."""


class Sandbox(ABC):
    """Abstract sandbox for file system and command operations."""

    @abstractmethod
    def read_file(self, path: str) -> str:
        """Read file content as text. Raises SandboxNotFound if absent."""

    @abstractmethod
    def write_file(self, path: str, content: str) -> None:
        """Write content to a file (create dirs as needed)."""

    @abstractmethod
    def remove_file(self, path: str) -> None:
        """Delete a file. Raises SandboxNotFound if absent."""

    @abstractmethod
    def file_exists(self, path: str) -> bool:
        """Check if a file exists."""

    @abstractmethod
    def list_files(self) -> List[str]:
        """List every file in the tree as a relative path."""

    @abstractmethod
    def spawn(self, command: str) -> SpawnedProcess:
        """Start a shell command in the project root."""

    def run_command(self, command: str) -> Tuple[str, int]:
        """Run a command to completion. Returns (combined output, exit code)."""
        proc = self.spawn(command)
        output = "".join(proc.output)
        return output, proc.wait()


# ============================================================
# Local Sandbox
# ============================================================

class LocalProcess(SpawnedProcess):
    """subprocess.Popen wrapper killed as a process group on timeout."""

    def __init__(self, proc: subprocess.Popen, timeout: Optional[int] = None):
        self._proc = proc
        self._timed_out = False
        self._timer: Optional[threading.Timer] = None
        if timeout:
            self._timer = threading.Timer(timeout, self._on_timeout)
            self._timer.daemon = True
            self._timer.start()

    def _on_timeout(self) -> None:
        self._timed_out = True
        logger.warning(f"Command timed out, killing pid {self._proc.pid}")
        self.kill()

    @property
    def output(self) -> Iterator[str]:
        stream = self._proc.stdout
        if stream is None:
            return
        try:
            for line in iter(stream.readline, ""):
                yield line
        finally:
            stream.close()
        if self._timed_out:
            yield "Command timed out\n"

    def wait(self, timeout: Optional[float] = None) -> int:
        try:
            rc = self._proc.wait(timeout=timeout)
        finally:
            if self._timer:
                self._timer.cancel()
        return -1 if self._timed_out else rc

    def kill(self) -> None:
        """Kill a process and its entire process group."""
        try:
            os.killpg(os.getpgid(self._proc.pid), signal.SIGTERM)
        except (ProcessLookupError, OSError):
            pass
        try:
            self._proc.kill()
        except (ProcessLookupError, OSError):
            pass


class LocalSandbox(Sandbox):
    """Sandbox that operates on a directory of the local filesystem."""

    def __init__(self, root: str = ".", command_timeout: Optional[int] = 300):
        self._root = os.path.abspath(root)
        self.command_timeout = command_timeout

    @property
    def root(self) -> str:
        return self._root

    def resolve_path(self, path: str) -> str:
        """Resolve a project-relative path, refusing anything outside the root."""
        full = os.path.normpath(os.path.join(self._root, path))
        if full != self._root and not full.startswith(self._root + os.sep):
            raise SandboxError(f"Path escapes sandbox root: {path!r}")
        return full

    def read_file(self, path: str) -> str:
        full = self.resolve_path(path)
        try:
            with open(full, "r", encoding="utf-8", errors="replace") as f:
                return f.read()
        except FileNotFoundError:
            raise SandboxNotFound(path)
        except OSError as e:
            raise SandboxError(f"Cannot read {path}: {e}")

    def write_file(self, path: str, content: str) -> None:
        full = self.resolve_path(path)
        try:
            os.makedirs(os.path.dirname(full), exist_ok=True)
            with open(full, "w", encoding="utf-8") as f:
                f.write(content)
        except OSError as e:
            raise SandboxError(f"Cannot write {path}: {e}")

    def remove_file(self, path: str) -> None:
        full = self.resolve_path(path)
        try:
            os.remove(full)
        except FileNotFoundError:
            raise SandboxNotFound(path)
        except OSError as e:
            raise SandboxError(f"Cannot remove {path}: {e}")

    def file_exists(self, path: str) -> bool:
        return os.path.isfile(self.resolve_path(path))

    def list_files(self) -> List[str]:
        found = []
        for dirpath, dirnames, filenames in os.walk(self._root):
            dirnames[:] = sorted(d for d in dirnames if d not in IGNORED_DIRS)
            for name in sorted(filenames):
                rel = os.path.relpath(os.path.join(dirpath, name), self._root)
                found.append(rel.replace(os.sep, "/"))
        return found

    def spawn(self, command: str) -> SpawnedProcess:
        logger.info(f"Spawning: {command}")
        proc = subprocess.Popen(
            command,
            shell=True,
            cwd=self._root,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            bufsize=1,
            preexec_fn=os.setsid,  # process group for clean kill
        )
        return LocalProcess(proc, timeout=self.command_timeout)


# ============================================================
# In-memory Sandbox
# ============================================================

class MemoryProcess(SpawnedProcess):
    """Replays a canned command result."""

    def __init__(self, chunks: List[str], exit_code: int):
        self._chunks = list(chunks)
        self._exit_code = exit_code

    @property
    def output(self) -> Iterator[str]:
        return iter(self._chunks)

    def wait(self, timeout: Optional[float] = None) -> int:
        return self._exit_code


class MemorySandbox(Sandbox):
    """
    Sandbox backed by a dict. Commands are not executed: they are recorded in
    `spawned` and answer with the result registered by set_command_result
    (default: no output, exit code 0).
    """

    def __init__(self, files: Optional[Dict[str, str]] = None):
        self.files: Dict[str, str] = dict(files or {})
        self.spawned: List[str] = []
        self._results: Dict[str, Tuple[List[str], int]] = {}
        self._failing_paths = set()
        self._lock = threading.Lock()

    def set_command_result(self, command: str, output: str = "", exit_code: int = 0) -> None:
        chunks = output.splitlines(keepends=True) if output else []
        self._results[command] = (chunks, exit_code)

    def fail_writes(self, path: str) -> None:
        """Make every write or removal of path raise SandboxError."""
        self._failing_paths.add(path)

    def read_file(self, path: str) -> str:
        with self._lock:
            if path not in self.files:
                raise SandboxNotFound(path)
            return self.files[path]

    def write_file(self, path: str, content: str) -> None:
        with self._lock:
            if path in self._failing_paths:
                raise SandboxError(f"Cannot write {path}: read-only")
            self.files[path] = content

    def remove_file(self, path: str) -> None:
        with self._lock:
            if path in self._failing_paths:
                raise SandboxError(f"Cannot remove {path}: read-only")
            if path not in self.files:
                raise SandboxNotFound(path)
            del self.files[path]

    def file_exists(self, path: str) -> bool:
        with self._lock:
            return path in self.files

    def list_files(self) -> List[str]:
        with self._lock:
            return sorted(self.files)

    def spawn(self, command: str) -> SpawnedProcess:
        with self._lock:
            self.spawned.append(command)
            chunks, exit_code = self._results.get(command, ([], 0))
        return MemoryProcess(chunks, exit_code)
