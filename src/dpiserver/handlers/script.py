"""
=============================================================================
DLS DAEMON (LOCAL SCRIPTS)
=============================================================================

A filter daemon: one connection on stdin/stdout, one request, then exit.

    dls:weather?berlin   →  <dls_dir>/weather.dls berlin
    dls:                 →  <dls_dir>/default.dls

The script writes a complete HTTP response (status line, headers and
body) to its stdout, which is relayed verbatim after the begin record.
Scripts must exist under dls_dir and be executable by their owner.

=============================================================================
"""

import errno
import logging
import os
import stat

from ..core.pipeline import HelperLaunchError, ProcessPipeline
from ..dpip.records import Record, RecordError
from ..http.response import error_response
from ..http.status_codes import HTTPStatus
from ..resources.paths import ResourceError
from .base import DaemonHandler, Producer, RawStreamProducer


logger = logging.getLogger(__name__)


MAX_NAME_LENGTH = 1024

SCRIPT_SUFFIX = ".dls"


class ScriptError(ResourceError):
    """A script could not be run; answered with 500 Execution Error."""

    def __init__(self, message: str):
        super().__init__(errno.EIO, message)

    @property
    def status(self) -> HTTPStatus:
        return HTTPStatus.INTERNAL_SERVER_ERROR

    def to_response(self) -> bytes:
        return error_response(
            self.status,
            self.strerror,
            reason="Execution Error",
            content_type="text/html",
        )


class ScriptHandler(DaemonHandler):
    """Runs a local script and relays its output."""

    name = "dls"
    default_resource = "default"
    multiplexed = False

    def script_command(self, url: str):
        """
        Resolve a dls: URL to the script's argument vector.

        Raises:
            RecordError: The URL is not a dls: URL.
            ScriptError: The script name is unusable or the script is
                missing or not executable.
        """
        if not url or not url.startswith("dls:"):
            raise RecordError(f"URL {url!r} is not a dls: URL")

        name, sep, arg = url[len("dls:"):].partition("?")
        name = name or self.default_resource

        if len(name) > MAX_NAME_LENGTH:
            raise ScriptError("DLS name too long")
        if ".." in name.split("/"):
            raise ScriptError("DLS file not found")

        script = os.path.join(self.config.dls_dir, name.lstrip("/") + SCRIPT_SUFFIX)
        logger.info(f"DLS script = {script}")

        try:
            st = os.stat(script)
        except (OSError, ValueError) as e:
            raise ScriptError("DLS file not found") from e
        if not st.st_mode & stat.S_IXUSR:
            raise ScriptError("DLS file is not executable")

        return [script, arg] if sep else [script]

    def open(self, request: Record, legacy_style: bool) -> Producer:
        argv = self.script_command(request.get("url"))
        try:
            pipeline = ProcessPipeline([argv]).start()
        except HelperLaunchError as e:
            raise ScriptError("DLS execution error") from e
        return RawStreamProducer(pipeline, self.config.chunk_size)
