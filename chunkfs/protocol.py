"""Wire format shared by the chunk storage client and servers."""

from __future__ import annotations

import hashlib
import os
import re
from enum import IntEnum

BUF_SIZE = 64 * 1024
MAXLINE = 8 * 1024
MAX_SERVERS = 4
LISTENQ = 200
CHUNK_COUNT = 4

HEADER_END = b"\r\n\r\n"
END_MARKER = "-END-"
ACK = b"OK"

# CHUNK_DISTRIBUTION[hash_index][chunk] names the two servers holding that chunk.
CHUNK_DISTRIBUTION = (
    ((0, 1), (1, 2), (2, 3), (3, 0)),
    ((3, 0), (0, 1), (1, 2), (2, 3)),
    ((2, 3), (3, 0), (0, 1), (1, 2)),
    ((1, 2), (2, 3), (3, 0), (0, 1)),
)

_COMMAND_CODE = re.compile(rb"\s*([+-]?\d+)")


class Command(IntEnum):
    """Request codes understood by the storage servers."""

    LIST = 0
    GET = 1
    PUT = 2


class ProtocolError(Exception):
    """A request or reply that does not follow the protocol."""


def hash_index(filename: str) -> int:
    """Return the distribution row (0-3) chosen by the MD5 of a file name."""
    digest = hashlib.md5(os.fsencode(filename), usedforsecurity=False).digest()
    return int.from_bytes(digest[:4], "big") % CHUNK_COUNT


def chunk_servers(index: int, chunk: int) -> tuple[int, int]:
    """Return the two servers that store ``chunk`` for distribution row ``index``."""
    if not 0 <= index < CHUNK_COUNT:
        raise ValueError(f"distribution index out of range: {index}")
    if not 0 <= chunk < CHUNK_COUNT:
        raise ValueError(f"chunk number out of range: {chunk}")
    return CHUNK_DISTRIBUTION[index][chunk]


def chunk_sizes(total: int) -> list[int]:
    """Split ``total`` bytes into four sizes, the first ones taking the remainder."""
    if total < 0:
        raise ValueError(f"size must not be negative: {total}")
    base, remainder = divmod(total, CHUNK_COUNT)
    return [base + (1 if chunk < remainder else 0) for chunk in range(CHUNK_COUNT)]


def split_chunks(data: bytes) -> list[bytes]:
    """Cut ``data`` into the four consecutive chunks stored on the servers."""
    chunks = []
    offset = 0
    for size in chunk_sizes(len(data)):
        chunks.append(bytes(data[offset:offset + size]))
        offset += size
    return chunks


def put_header(name: str, size: int) -> bytes:
    """Header announcing ``size`` bytes of the chunk ``name``."""
    return f"{int(Command.PUT)} ".encode() + os.fsencode(name) + f" {size}".encode() + HEADER_END


def get_request(name: str) -> bytes:
    """Request for the chunk ``name``."""
    return f"{int(Command.GET)} ".encode() + os.fsencode(name) + HEADER_END


def list_request() -> bytes:
    """Request for a server's chunk listing."""
    return str(int(Command.LIST)).encode() + HEADER_END


def parse_command(data: bytes | str) -> Command:
    """Read the command code at the start of a request."""
    if isinstance(data, str):
        data = data.encode()
    match = _COMMAND_CODE.match(data)
    if match is None:
        raise ProtocolError("request has no command code")
    code = int(match.group(1))
    try:
        return Command(code)
    except ValueError:
        raise ProtocolError(f"unknown command code {code}") from None