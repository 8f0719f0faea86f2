"""Client that spreads files over four chunk servers and gathers them back."""

from __future__ import annotations

import contextlib
import itertools
import os
import re
import socket
import sys
from dataclasses import dataclass
from pathlib import Path

from .protocol import (
    ACK,
    CHUNK_COUNT,
    END_MARKER,
    HEADER_END,
    MAX_SERVERS,
    MAXLINE,
    Command,
    ProtocolError,
    chunk_servers,
    get_request,
    hash_index,
    list_request,
    put_header,
    split_chunks,
)

_ACK_SIZE = 15
_RECV_SIZE = 4096
_DEFAULT_TIMEOUT = 1.0

_SERVER = re.compile(r"\s*server")
_SPACE = re.compile(r"\s*")
_NAME = re.compile(r"\S{1,63}")
_HOST = re.compile(r"[^:]{1,255}")
_PORT = re.compile(r":\s*([+-]?\d+)")
_CHUNK_NUMBER = re.compile(r"\s*([+-]?\d+)")
_GET_HEADER = re.compile(rb"\s*\S+\s+([+-]?\d+)")

_PROG = "chunkfs-client"
_USAGE = f"Usage: {_PROG} <command> [filename] ... [filename]"
_COMMANDS = (
    "Commands:\n"
    "  list  <filename> [filename...]\n"
    "  list \n"
    "  get <filename> [filename...]\n"
    "  put <filename> [filename...]"
)


@dataclass(frozen=True)
class ServerEntry:
    """One ``server <name> <host>:<port>`` line of the client configuration."""

    name: str
    host: str
    port: int


def _parse_line(line: str) -> ServerEntry | None:
    start = _SERVER.match(line)
    if start is None:
        return None
    pos = _SPACE.match(line, start.end()).end()
    name = _NAME.match(line, pos)
    if name is None:
        return None
    pos = _SPACE.match(line, name.end()).end()
    host = _HOST.match(line, pos)
    if host is None:
        return None
    port = _PORT.match(line, host.end())
    if port is None:
        return None
    return ServerEntry(name.group(), host.group(), int(port.group(1)))


def parse_config(lines) -> list[ServerEntry]:
    """Read server entries from configuration lines, warning about malformed ones."""
    entries = []
    for line in lines:
        entry = _parse_line(line)
        if entry is not None:
            entries.append(entry)
        elif len(line) > 1 and not line.startswith("#"):
            end = "" if line.endswith("\n") else "\n"
            print(f"Warning: Skipping malformed line in config: {line}", end=end, file=sys.stderr)
    return entries


def load_config(path) -> list[ServerEntry]:
    """Read the server entries from the configuration file at ``path``."""
    with open(path, encoding="utf-8", errors="replace") as handle:
        return parse_config(handle)


def summarize_listing(names, requested=None) -> list[tuple[str, bool]]:
    """Group chunk names by file; return ``(file, complete)`` pairs in sorted order.

    When ``requested`` holds names, only those files are reported.
    """
    wanted = set(requested or ())
    summary = []
    for base, group in itertools.groupby(sorted(names), key=lambda name: name[:-2]):
        found = set()
        for name in group:
            _head, dot, suffix = name.rpartition(".")
            if not dot:
                continue
            match = _CHUNK_NUMBER.match(suffix)
            if match is not None:
                number = int(match.group(1))
                if 0 <= number < CHUNK_COUNT:
                    found.add(number)
        if wanted and base not in wanted:
            continue
        summary.append((base, len(found) == CHUNK_COUNT))
    return summary


class DfcClient:
    """Stores files as four chunks, each kept on two of the connected servers."""

    def __init__(self, connections):
        self.connections = list(connections)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    @classmethod
    def connect(cls, entries, timeout=_DEFAULT_TIMEOUT) -> DfcClient:
        """Connect to at most four of ``entries``; raise if none can be reached."""
        connections = []
        for entry in entries:
            if len(connections) >= MAX_SERVERS:
                break
            try:
                socket.inet_pton(socket.AF_INET, entry.host)
            except OSError:
                print(f"Invalid address/format for server {entry.name}: {entry.host}", file=sys.stderr)
                continue
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            try:
                sock.settimeout(timeout)
                sock.connect((entry.host, entry.port))
            except (OSError, OverflowError) as exc:
                sock.close()
                print(
                    f"Connection failed for {entry.name} ({entry.host}:{entry.port}): {exc}",
                    file=sys.stderr,
                )
                continue
            connections.append(sock)
        if not connections:
            raise ConnectionError("No servers could be connected from config file.")
        return cls(connections)

    def put(self, filename) -> None:
        """Split the file into chunks and store each on its two servers."""
        if len(self.connections) < CHUNK_COUNT:
            raise ConnectionError(
                f"Not enough servers connected ({len(self.connections)}) for PUT operation (requires 4)."
            )
        filename = os.fspath(filename)
        data = Path(filename).read_bytes()
        index = hash_index(filename)
        for chunk, payload in enumerate(split_chunks(data)):
            header = put_header(f"{filename}.{chunk}", len(payload))
            for server in chunk_servers(index, chunk):
                sock = self.connections[server]
                try:
                    sock.sendall(header)
                    sock.sendall(payload)
                    ack = sock.recv(_ACK_SIZE)
                except OSError:
                    ack = b""
                if not ack.startswith(ACK):
                    raise ProtocolError(f"No ACK from server or error, server {server}")

    def get(self, filename) -> None:
        """Rebuild the file from its chunks, removing it if a chunk is missing."""
        filename = os.fspath(filename)
        index = hash_index(filename)
        path = Path(filename)
        try:
            handle = path.open("wb")
        except OSError:
            print(f"Failed to create output file {filename}", file=sys.stderr)
            raise
        with handle:
            for chunk in range(CHUNK_COUNT):
                name = f"{filename}.{chunk}"
                for server in chunk_servers(index, chunk):
                    data = self._fetch(server, name)
                    if data is not None:
                        handle.write(data)
                        break
                else:
                    handle.close()
                    path.unlink(missing_ok=True)
                    raise ProtocolError(f"{filename} is incomplete without chunk {chunk}")

    def _fetch(self, server: int, name: str) -> bytes | None:
        if server >= len(self.connections):
            return None
        sock = self.connections[server]
        try:
            sock.sendall(get_request(name))
        except OSError:
            return None
        try:
            return self._receive_chunk(sock)
        except ProtocolError as exc:
            print(f"{exc} ({name})", file=sys.stderr)
            with contextlib.suppress(OSError):
                sock.sendall(str(exc).encode())
            return None

    @staticmethod
    def _receive_chunk(sock: socket.socket) -> bytes:
        try:
            reply = sock.recv(MAXLINE)
        except OSError:
            reply = b""
        if not reply:
            raise ProtocolError("Error: Failed to receive header")
        head, sep, body = reply.partition(HEADER_END)
        if not sep:
            raise ProtocolError("Error: Header not found")
        match = _GET_HEADER.match(head)
        if match is None or int(match.group(1)) < 0:
            raise ProtocolError("Error: Invalid GET request format")
        size = int(match.group(1))
        data = bytearray(body[:size])
        while len(data) < size:
            try:
                part = sock.recv(min(_RECV_SIZE, size - len(data)))
            except OSError:
                part = b""
            if not part:
                raise ProtocolError("Error: Failed to receive file data")
            data += part
        with contextlib.suppress(OSError):
            sock.sendall(ACK)
        return bytes(data)

    def list(self, requested=None) -> list[tuple[str, bool]]:
        """Ask every server for its chunks and report which files are complete."""
        names: list[str] = []
        warned = False
        for position, sock in enumerate(self.connections):
            try:
                sock.sendall(list_request())
            except OSError:
                print(f"Error sending LIST request to server {position}", file=sys.stderr)
                continue
            for line in self._receive_listing(sock).split("\n"):
                if not line or line == END_MARKER:
                    continue
                if len(names) >= MAXLINE:
                    if not warned:
                        print("Warning: Too many files to list, ignoring extra files.", file=sys.stderr)
                        warned = True
                    continue
                names.append(line)
        return summarize_listing(names, requested)

    @staticmethod
    def _receive_listing(sock: socket.socket) -> str:
        marker = END_MARKER.encode()
        response = b""
        while len(response) < MAXLINE - 1:
            try:
                part = sock.recv(MAXLINE - 1 - len(response))
            except OSError:
                break
            if not part:
                break
            response += part
            if marker in response:
                break
        return os.fsdecode(response)

    def close(self) -> None:
        """Close every server connection."""
        for sock in self.connections:
            sock.close()


def main(argv=None) -> int:
    """Run ``list``, ``get`` or ``put`` against the servers in ``~/dfc.conf``."""
    args = sys.argv[1:] if argv is None else list(argv)
    if not args:
        print(_USAGE, file=sys.stderr)
        return 1
    word, files = args[0], args[1:]
    if word.startswith("list"):
        command = Command.LIST
    elif word.startswith("get") and files:
        command = Command.GET
    elif word.startswith("put") and files:
        command = Command.PUT
    else:
        print(_USAGE, file=sys.stderr)
        print(_COMMANDS, file=sys.stderr)
        return 0

    home = os.environ.get("HOME")
    if home is None:
        print("Error: HOME environment variable not set.", file=sys.stderr)
        return 1
    try:
        entries = load_config(Path(home) / "dfc.conf")
    except OSError as exc:
        print(f"Error opening config file (~/dfc.conf): {exc.strerror}", file=sys.stderr)
        return 1
    try:
        client = DfcClient.connect(entries)
    except ConnectionError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    with client:
        if command is Command.PUT and len(client.connections) != CHUNK_COUNT:
            print(
                f"Error: Not enough servers connected ({len(client.connections)}) "
                "for PUT operation (requires 4).",
                file=sys.stderr,
            )
            return 1
        if command is Command.LIST:
            for name, complete in client.list(files):
                print(name if complete else f"{name} [incomplete]")
        elif command is Command.GET:
            for filename in files:
                print(f"Getting file: {filename}")
                try:
                    client.get(filename)
                except (ProtocolError, OSError) as exc:
                    print(exc, file=sys.stderr)
                    print(f"get {filename} failed.", file=sys.stderr)
        else:
            for filename in files:
                print(f"Put file: {filename}")
                try:
                    client.put(filename)
                except (ProtocolError, OSError) as exc:
                    print(exc, file=sys.stderr)
                    print(f"put {filename} failed.", file=sys.stderr)
    return 0