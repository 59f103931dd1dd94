"""
Process Handles — One backend-compiler invocation behind one interface

Two variants:
- ExternalProcess: a real OS process; stdout and stderr merged into the
  line stream the output parser reads
- EmbeddedProcess: the compiler runs inside this process. wait() performs
  the whole compilation synchronously and terminates the synthetic line
  stream with TERMINATION_MARKER

Readers stop at end of stream or at TERMINATION_MARKER, whichever comes
first, so both variants drain the same way.
"""

import logging
import queue
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Sequence

logger = logging.getLogger(__name__)


TERMINATION_MARKER = "__incremake_compiler_terminated__"

CLASSPATH_OPTIONS = ("-classpath", "-cp")


class ProcessHandle(ABC):
    """Process-like handle for one backend invocation."""

    @abstractmethod
    def lines(self) -> Iterator[str]:
        """Output lines without trailing newlines. Consumed by one reader."""
        pass

    @abstractmethod
    def wait(self) -> int:
        """Block until the compiler finishes. Returns its exit code."""
        pass

    @abstractmethod
    def destroy(self) -> None:
        """Forcibly terminate the compiler."""
        pass

    @property
    @abstractmethod
    def exit_code(self) -> Optional[int]:
        """Last known exit code (None while running)."""
        pass

    def close(self) -> None:
        """Release stream resources once the reader has been joined."""
        pass


class ExternalProcess(ProcessHandle):
    """Backend compiler running as an OS process."""

    def __init__(self, command: Sequence[str], cwd: Optional[str] = None):
        """
        Raises:
            OSError: the executable cannot be started
            ValueError: invalid arguments
        """
        self.command = list(command)
        self._process = subprocess.Popen(
            self.command,
            cwd=cwd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            errors="replace",
        )

    def lines(self) -> Iterator[str]:
        for line in self._process.stdout:
            yield line.rstrip("\r\n")

    def wait(self) -> int:
        return self._process.wait()

    def destroy(self) -> None:
        if self._process.poll() is None:
            self._process.kill()
            self._process.wait()

    @property
    def exit_code(self) -> Optional[int]:
        return self._process.poll()

    @property
    def pid(self) -> int:
        return self._process.pid

    def close(self) -> None:
        if self._process.stdout is not None:
            self._process.stdout.close()


class LineWriter:
    """
    Text stream handing complete lines to a queue.

    Given to in-process compilers as their output stream.
    """

    def __init__(self, lines: "queue.Queue[str]"):
        self._lines = lines
        self._buffer = ""

    def write(self, text: str) -> int:
        self._buffer += text
        while "\n" in self._buffer:
            line, self._buffer = self._buffer.split("\n", 1)
            self._lines.put(line.rstrip("\r"))
        return len(text)

    def writelines(self, lines) -> None:
        for line in lines:
            self.write(line)

    def println(self, line: str = "") -> None:
        self.write(line + "\n")

    def flush(self) -> None:
        if self._buffer:
            self._lines.put(self._buffer)
            self._buffer = ""


class EmbeddedProcess(ProcessHandle):
    """
    In-process compilation behind the process interface.

    Nothing runs until wait(), which compiles synchronously on the calling
    thread while the reader consumes the lines it produces.
    """

    def __init__(self, compile_fn: Callable[[List[str], LineWriter], int], arguments: Sequence[str]):
        self._compile_fn = compile_fn
        self.arguments = list(arguments)
        self._lines: "queue.Queue[str]" = queue.Queue()
        self._exit_code: Optional[int] = None

    def lines(self) -> Iterator[str]:
        while True:
            line = self._lines.get()
            yield line
            if line == TERMINATION_MARKER:
                return

    def wait(self) -> int:
        if self._exit_code is not None:
            return self._exit_code
        writer = LineWriter(self._lines)
        try:
            self._exit_code = self._compile_fn(self.arguments, writer)
        finally:
            writer.flush()
            writer.println(TERMINATION_MARKER)
        return self._exit_code

    def destroy(self) -> None:
        # Compilation runs on the waiting thread; nothing to kill
        pass

    @property
    def exit_code(self) -> Optional[int]:
        return self._exit_code


def launch_external(command: Sequence[str], cwd: Optional[str] = None) -> ExternalProcess:
    """Start the backend as an OS process."""
    logger.info("Running compiler: %s", " ".join(command))
    return ExternalProcess(command, cwd=cwd)


def launch_embedded(
    compile_fn: Callable[[List[str], LineWriter], int],
    command: Sequence[str],
    main_marker: str,
) -> EmbeddedProcess:
    """Prepare an in-process compilation from a launcher command line."""
    arguments = embedded_arguments(command, main_marker)
    logger.info("Running in-process compiler: %s", " ".join(arguments))
    return EmbeddedProcess(compile_fn, arguments)


def embedded_arguments(command: Sequence[str], main_marker: str) -> List[str]:
    """
    Compiler arguments of a launcher command line.

    Drops every token up to and including main_marker. An '@file' value
    following -classpath/-cp is replaced by the file's content, since the
    launcher that would expand it is bypassed. Without a marker nothing
    is kept.
    """
    try:
        start = list(command).index(main_marker) + 1
    except ValueError:
        return []

    arguments: List[str] = []
    expect_classpath = False
    for token in command[start:]:
        if expect_classpath:
            expect_classpath = False
            if token.startswith("@"):
                token = read_argument_file(token[1:])
        elif token in CLASSPATH_OPTIONS:
            expect_classpath = True
        arguments.append(token)
    return arguments


def read_argument_file(path: str) -> str:
    """Content of an argument file, stripped of surrounding whitespace."""
    return Path(path).read_text().strip()
