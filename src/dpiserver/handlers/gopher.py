"""
=============================================================================
GOPHER DAEMON
=============================================================================

A filter daemon that relays one gopher request:

    gopher://gopher.club/phlogs/          type 1 (menu), port 70
    gopher://0::example.org:7070/a.txt    type 0 (text), port 7070
    gopher://7::example.org/search?q=dpi  selector "/search\tdpi"

The item type picks the Content-Type of the relayed response; the
gopher server's reply is passed through unchanged. An optional proxy
(record attributes proxy_url and proxy_connect) is connected to first
and must accept the CONNECT request with a 2xx answer.

The same code backs the command line downloader:

    python -m dpiserver gopher --download gopher://example.org/ out.txt

=============================================================================
"""

import logging
import socket
from dataclasses import dataclass
from typing import Optional, Tuple

from ..dpip.records import Record, RecordError
from ..http.response import ResponseHead
from ..http.status_codes import HTTPStatus
from ..resources.classify import UNKNOWN_TYPE
from ..resources.paths import ResourceError
from .base import DaemonHandler, Producer, StreamProducer


logger = logging.getLogger(__name__)


GOPHER_PREFIX = "gopher://"
DEFAULT_PORT = 70
DEFAULT_TYPE = "1"
MAX_QUERY_SIZE = 2048
READ_SIZE = 4096

# Item type → Content-Type of the relayed response
CONTENT_TYPES = {
    "0": "text/plain; charset=UTF-8",
    "g": "image/gif",
    "p": "image/png",
    "h": "text/html; charset=UTF-8",
    "X": "text/xml; charset=UTF-8",
    "1": "text/gopher; charset=UTF-8",
    "7": "text/gopher; charset=UTF-8",
}


class GopherError(ResourceError):
    """The gopher server (or proxy) could not be reached or refused."""

    def __init__(self, message: str):
        super().__init__(0, message)

    @property
    def status(self) -> HTTPStatus:
        return HTTPStatus.INTERNAL_SERVER_ERROR


@dataclass
class GopherRequest:
    """
    A parsed gopher URL.

    Attributes:
        item_type: One-character gopher item type.
        host: Server host name.
        port: Server port.
        selector: Bytes sent to the server, ending in CRLF.
    """

    item_type: str
    host: str
    port: int
    selector: bytes

    @property
    def content_type(self) -> str:
        return CONTENT_TYPES.get(self.item_type, UNKNOWN_TYPE)


def split_host_port(address: str, default_port: int = DEFAULT_PORT) -> Tuple[str, int]:
    """
    Split "host[:port][/...]" into host and port.

    A scheme prefix ("gopher://", "http://") is skipped. A port that is
    not a number falls back to its leading digits, or to 0.
    """
    if "://" in address:
        address = address[address.index("://") + 3:]

    end = len(address)
    for i, ch in enumerate(address):
        if ch in ":/":
            end = i
            break
    host = address[:end]

    port = default_port
    if end < len(address) and address[end] == ":":
        digits = ""
        for ch in address[end + 1:]:
            if not ch.isdigit():
                break
            digits += ch
        port = int(digits) if digits else 0
    return host, port


def parse_gopher_url(url: Optional[str]) -> GopherRequest:
    """
    Parse a gopher:// URL.

    Raises:
        RecordError: For URLs that are not gopher:// or are too long.
    """
    if not url or url[:len(GOPHER_PREFIX)].lower() != GOPHER_PREFIX:
        raise RecordError(f"URL {url!r} is not a gopher:// URL")
    if len(url) + 10 >= MAX_QUERY_SIZE:
        raise RecordError("Gopher URL too long")

    query = url
    if "/" not in url[len(GOPHER_PREFIX):]:
        query += "/"
    query += "\r\n"

    offset = len(GOPHER_PREFIX)
    item_type = DEFAULT_TYPE
    if "::" in query:
        item_type = query[query.index("::") - 1]
        offset += 3

    # "?q=words" carries the search terms of a type 7 item
    if "?q=" in query:
        mark = query.index("?")
        query = query[:mark] + "\t" + query[mark + 3:]

    host, port = split_host_port(query[offset:])
    slash = query.find("/", offset)
    selector = query[slash:] if slash >= 0 else "/\r\n"

    return GopherRequest(
        item_type=item_type,
        host=host,
        port=port,
        selector=selector.encode("utf-8", errors="surrogateescape"),
    )


def proxy_handshake(sock: socket.socket, proxy_connect: str) -> None:
    """
    Send the CONNECT request and check the proxy's status.

    Raises:
        GopherError: If the proxy hangs up or answers anything but 2xx.
    """
    sock.sendall(proxy_connect.encode("utf-8", errors="surrogateescape"))

    reply = b""
    while b"\r\n\r\n" not in reply:
        data = sock.recv(READ_SIZE)
        if not data:
            break
        reply += data

    if len(reply) < 12 or reply[9:10] != b"2":
        raise GopherError("CONNECT through proxy failed")
    logger.info("CONNECT through proxy succeeded")


def open_gopher(
    request: GopherRequest,
    proxy_url: Optional[str] = None,
    proxy_connect: Optional[str] = None,
) -> socket.socket:
    """
    Connect (through the proxy, if any) and send the selector.

    Raises:
        GopherError: If the connection or the proxy handshake fails.
    """
    host, port = (request.host, request.port) if proxy_url is None else split_host_port(proxy_url)

    try:
        sock = socket.create_connection((host, port))
    except OSError as e:
        logger.error(f"Cannot connect to {host}:{port}: {e}")
        raise GopherError(f"Cannot connect to {host}:{port}: {e}") from e

    try:
        if proxy_connect is not None:
            proxy_handshake(sock, proxy_connect)
        logger.info(f"Gopher request = {request.selector!r}")
        sock.sendall(request.selector)
    except GopherError:
        sock.close()
        raise
    except OSError as e:
        sock.close()
        raise GopherError(f"Error talking to {host}:{port}: {e}") from e
    return sock


class SocketReader:
    """Gives a connected socket the read()/close() of a stream source."""

    def __init__(self, sock: socket.socket):
        self.sock = sock

    def read(self, size: int) -> bytes:
        return self.sock.recv(size)

    def close(self) -> None:
        self.sock.close()


class GopherHandler(DaemonHandler):
    """Relays a gopher item as an HTTP response."""

    name = "gopher"
    multiplexed = False

    def open(self, request: Record, legacy_style: bool) -> Producer:
        gopher = parse_gopher_url(request.get("url"))
        sock = open_gopher(gopher, request.get("proxy_url"), request.get("proxy_connect"))
        head = ResponseHead().set_header("Content-Type", gopher.content_type)
        return StreamProducer(SocketReader(sock), head, READ_SIZE)


def download(
    url: str,
    output_filename: str,
    proxy_url: Optional[str] = None,
    proxy_connect: Optional[str] = None,
) -> int:
    """
    Save the raw reply for a gopher URL to a file.

    Returns:
        Process exit code: 0 on success, 1 on any failure.
    """
    try:
        with open(output_filename, "wb") as outfile:
            request = parse_gopher_url(url)
            with open_gopher(request, proxy_url, proxy_connect) as sock:
                while True:
                    data = sock.recv(READ_SIZE)
                    if not data:
                        break
                    outfile.write(data)
    except (OSError, RecordError) as e:
        logger.error(f"Download of {url} failed: {e}")
        return 1

    logger.info(f"Saved {url} to {output_filename}")
    return 0
