"""
=============================================================================
HELPER PROCESS PIPELINES
=============================================================================

Some resources only exist as the output of another program: a manual
page is `man -- ls | col -b`, an archive member is `unzip -p a.zip m`.
ProcessPipeline runs such a chain and exposes the last stage's stdout
as a readable stream.

    /dev/null ──► stage 1 ──pipe──► stage 2 ──pipe──► ... ──► read()
                  man -- ls          col -b

=============================================================================
TWO WAYS TO START A STAGE
=============================================================================

DIRECT EXEC (preferred):
    ProcessPipeline([["man", "--", page], ["col", "-b"]])

    Each stage gets a literal argument vector. No shell ever sees the
    request data, so nothing in it can be interpreted.

SHELL:
    ProcessPipeline.shell('unzip -p "/a.zip" "docs/x.html"')

    One `/bin/sh -c` stage built from fixed literals around a path.
    Only acceptable when every interpolated path has already passed
    validate_shell_path(), which rejects everything the shell would
    expand inside double quotes.

=============================================================================
LIFECYCLE
=============================================================================

    start()  ──►  read() / read() / ... ──►  b"" (EOF)  ──►  close()
                                                              │
                  early teardown (client gone) ───────────────┤
                                                              ▼
                                    close stdout, terminate stages that
                                    are still running, wait() for all

Every started stage is reaped exactly once, on every exit path, so the
daemon never accumulates zombies.

=============================================================================
"""

import logging
import os
import subprocess
from typing import Iterator, List, Optional, Sequence

from ..http.status_codes import HTTPStatus
from ..resources.paths import ResourceError


logger = logging.getLogger(__name__)

# Longest command line accepted for the shell form
MAX_COMMAND_LENGTH = 1023


class HelperLaunchError(ResourceError):
    """A helper program could not be started (missing binary, no pipes)."""

    @property
    def status(self) -> HTTPStatus:
        return HTTPStatus.INTERNAL_SERVER_ERROR


class ProcessPipeline:
    """
    A chain of helper processes with a readable final stdout.

    Usage:
        with ProcessPipeline([["man", "--", "ls"], ["col", "-b"]]).start() as man:
            for line in man.lines():
                ...
    """

    def __init__(self, stages: Sequence[Sequence[str]], stderr: Optional[int] = None):
        """
        Args:
            stages: Argument vectors, first stage first.
            stderr: Where stage stderr goes (None inherits the daemon's).
        """
        if not stages:
            raise ValueError("A pipeline needs at least one stage")
        self.stages = [list(argv) for argv in stages]
        self._stderr = stderr
        self._procs: List[subprocess.Popen] = []
        self._stdout = None
        self._eof = False
        self._closed = False

    @classmethod
    def shell(cls, command: str, stderr: Optional[int] = subprocess.DEVNULL) -> "ProcessPipeline":
        """
        Build a single-stage pipeline run by /bin/sh.

        Raises:
            HelperLaunchError: If the command is longer than MAX_COMMAND_LENGTH.
        """
        if len(os.fsencode(command)) > MAX_COMMAND_LENGTH:
            raise HelperLaunchError(0, "Helper command too long")
        return cls([["/bin/sh", "-c", command]], stderr=stderr)

    @property
    def pids(self) -> List[int]:
        return [proc.pid for proc in self._procs]

    def start(self) -> "ProcessPipeline":
        """
        Start every stage, wiring stdout to the next stage's stdin.

        Raises:
            HelperLaunchError: If any stage fails to start. Stages that
                did start are reaped before the error propagates.
        """
        upstream = subprocess.DEVNULL
        try:
            for argv in self.stages:
                proc = subprocess.Popen(
                    argv,
                    stdin=upstream,
                    stdout=subprocess.PIPE,
                    stderr=self._stderr,
                    close_fds=True,
                )
                self._procs.append(proc)

                # The child holds its own copy now
                if upstream is not subprocess.DEVNULL:
                    upstream.close()
                upstream = proc.stdout
        except OSError as e:
            logger.error(f"Cannot start helper {argv[0]!r}: {e}")
            self.close()
            raise HelperLaunchError(e.errno or 0, f"Cannot start {argv[0]}: {e.strerror}") from e
        except ValueError as e:
            # Embedded NUL in an argument
            logger.error(f"Cannot start helper {argv[0]!r}: {e}")
            self.close()
            raise HelperLaunchError(0, f"Cannot start {argv[0]}: {e}") from e

        self._stdout = upstream
        logger.debug(f"Started pipeline {self.stages} (pids {self.pids})")
        return self

    def fileno(self) -> int:
        """Descriptor of the final stdout (for selectors)."""
        return self._stdout.fileno()

    def read(self, size: int) -> bytes:
        """
        Read up to size bytes of output; b"" means the pipeline is done.

        Returns whatever the pipe holds, without waiting to fill size.
        """
        if self._stdout is None:
            return b""
        data = os.read(self._stdout.fileno(), size)
        if not data:
            self._eof = True
        return data

    def read_up_to(self, size: int) -> bytes:
        """Read until size bytes are collected or the output ends."""
        chunks = []
        remaining = size
        while remaining > 0:
            data = self.read(remaining)
            if not data:
                break
            chunks.append(data)
            remaining -= len(data)
        return b"".join(chunks)

    def lines(self) -> Iterator[str]:
        """Iterate over decoded output lines, newline included."""
        if self._stdout is None:
            return
        for raw in self._stdout:
            yield raw.decode("utf-8", errors="replace")
        self._eof = True

    def close(self) -> List[Optional[int]]:
        """
        Release the output pipe and reap every stage.

        Stages still running when the output was not fully read are
        terminated first. Safe to call more than once.

        Returns:
            The return code of each stage.
        """
        if self._closed:
            return [proc.returncode for proc in self._procs]
        self._closed = True

        if self._stdout is not None:
            try:
                self._stdout.close()
            except OSError:
                pass
            self._stdout = None

        for proc in self._procs:
            if proc.stdout is not None and not proc.stdout.closed:
                proc.stdout.close()
            if not self._eof and proc.poll() is None:
                proc.terminate()
            # wait() retries on EINTR
            proc.wait()

        codes = [proc.returncode for proc in self._procs]
        logger.debug(f"Pipeline {self.pids} exited with {codes}")
        return codes

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
