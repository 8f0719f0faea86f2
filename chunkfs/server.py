"""Storage server that keeps file chunks in one directory."""

from __future__ import annotations

import os
import socket
import sys
import threading
import time
from pathlib import Path

from .protocol import (
    ACK,
    END_MARKER,
    HEADER_END,
    LISTENQ,
    MAXLINE,
    Command,
    ProtocolError,
    parse_command,
)

_MAX_NAME = 127
_RECV_SIZE = 4096
_ACK_SIZE = 15
_SHUTDOWN_GRACE = 10.0
_ACCEPT_POLL = 0.5


class FileServer:
    """Serves LIST, GET and PUT requests for the chunks stored in ``directory``."""

    def __init__(self, directory, host="", port=0):
        self.directory = Path(directory)
        if not self.directory.exists():
            self.directory.mkdir(mode=0o700)
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((host, port))
            sock.listen(LISTENQ)
            sock.settimeout(_ACCEPT_POLL)
        except OSError:
            sock.close()
            raise
        self._sock = sock
        self.address = sock.getsockname()[:2]
        self._stopping = threading.Event()
        self._workers: list[threading.Thread] = []
        self._lock = threading.Lock()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def _path(self, name: str) -> Path:
        return Path(f"{self.directory}/{name}")

    def list_entries(self) -> list[str]:
        """Names of the entries stored in the server directory, sorted."""
        return sorted(os.listdir(self.directory))

    def handle_connection(self, conn: socket.socket) -> None:
        """Serve requests on ``conn`` until the peer closes it."""
        pending = b""
        with conn:
            try:
                while (request := self._read_request(conn, pending)) is not None:
                    pending = self._dispatch(conn, request)
            except OSError as exc:
                print(f"Read error: {exc}")

    @staticmethod
    def _read_request(conn: socket.socket, pending: bytes) -> bytes | None:
        buffer = pending
        while HEADER_END not in buffer and len(buffer) < MAXLINE:
            data = conn.recv(MAXLINE - len(buffer))
            if not data:
                return buffer or None
            buffer += data
        return buffer

    def _dispatch(self, conn: socket.socket, request: bytes) -> bytes:
        header, _sep, rest = request.partition(HEADER_END)
        try:
            command = parse_command(request)
        except ProtocolError:
            print("Invalid request method")
            return b""
        print("String received from the client:", header.decode(errors="replace"))
        try:
            if command is Command.PUT:
                return self.handle_put(conn, request)
            if command is Command.GET:
                self.handle_get(conn, request)
            else:
                self.handle_list(conn)
        except ProtocolError as exc:
            print(str(exc).strip(), file=sys.stderr)
            conn.sendall(str(exc).encode())
            return b""
        return rest

    def handle_list(self, conn: socket.socket) -> None:
        """Send the directory listing followed by the end marker."""
        try:
            names = self.list_entries()
        except OSError:
            print(f"Error opening directory {self.directory}", file=sys.stderr)
            raise ProtocolError("Error: Could not open directory\n") from None
        marker = END_MARKER.encode() + b"\n"
        limit = MAXLINE - 1 - len(marker)
        body = bytearray()
        for name in names:
            line = os.fsencode(name) + b"\n"
            if len(body) + len(line) > limit:
                break
            body += line
        body += marker
        conn.sendall(bytes(body))

    def handle_get(self, conn: socket.socket, request: bytes) -> None:
        """Send the requested chunk with its header and wait for the client's ACK."""
        fields = request.partition(HEADER_END)[0].split()
        if len(fields) < 2 or len(fields[1]) > _MAX_NAME:
            raise ProtocolError("Error: Failed to open file")
        raw_name = fields[1]
        name = os.fsdecode(raw_name)
        path = self._path(name)
        try:
            data = path.read_bytes()
        except OSError:
            print(f"get {path} failed to open file.", file=sys.stderr)
            raise ProtocolError("Error: Failed to open file") from None
        conn.sendall(raw_name + f" {len(data)}".encode() + HEADER_END + data)
        try:
            ack = conn.recv(_ACK_SIZE)
        except OSError:
            ack = b""
        if not ack.startswith(ACK):
            print(f"No ACK from client for {name}", file=sys.stderr)
            return
        print(f"{name} sent.")

    def handle_put(self, conn: socket.socket, request: bytes) -> bytes:
        """Store the announced chunk and ACK it; return bytes received past its end."""
        head, sep, body = request.partition(HEADER_END)
        if not sep:
            raise ProtocolError("Error: Header not found")
        fields = head.split()
        try:
            code, raw_name, raw_size = fields[:3]
            int(code)
            size = int(raw_size)
        except ValueError:
            raise ProtocolError("Error: Invalid PUT request format") from None
        if size < 0 or len(raw_name) > _MAX_NAME:
            raise ProtocolError("Error: Invalid PUT request format")
        name = os.fsdecode(raw_name)
        path = self._path(name)
        try:
            handle = path.open("wb")
        except OSError as exc:
            print(f"Error: Failed to create file {path}: {exc.strerror}", file=sys.stderr)
            raise ProtocolError("Error: Failed to create file") from exc
        with handle:
            handle.write(body[:size])
            written = min(len(body), size)
            while written < size:
                try:
                    data = conn.recv(min(_RECV_SIZE, size - written))
                except OSError:
                    data = b""
                if not data:
                    raise ProtocolError("Error: Failed to receive file data")
                handle.write(data)
                written += len(data)
        print(f"Saved file {name} ({written} bytes)")
        conn.sendall(ACK)
        return body[size:]

    def serve_forever(self) -> None:
        """Accept connections and serve each on its own thread until closed."""
        print(f"Server running on port {self.address[1]} using directory {self.directory}")
        print("Waiting for connections...")
        while not self._stopping.is_set():
            try:
                conn, _peer = self._sock.accept()
            except TimeoutError:
                continue
            except OSError:
                break
            conn.settimeout(None)
            worker = threading.Thread(target=self.handle_connection, args=(conn,), daemon=True)
            with self._lock:
                self._workers = [w for w in self._workers if w.is_alive()]
                self._workers.append(worker)
            worker.start()

    def close(self) -> None:
        """Stop accepting, give open connections time to finish, close the socket."""
        if self._sock.fileno() == -1:
            return
        self._stopping.set()
        deadline = time.monotonic() + _SHUTDOWN_GRACE
        with self._lock:
            workers = list(self._workers)
        for worker in workers:
            worker.join(max(0.0, deadline - time.monotonic()))
        if any(worker.is_alive() for worker in workers):
            print("Connection handlers took too long to terminate")
        self._sock.close()
        print("Server socket closed.")


def main(argv=None) -> int:
    """Run a storage server: ``<directory> <port>``."""
    args = sys.argv[1:] if argv is None else list(argv)
    usage = "Usage: chunkfs-server <directory> <port>"
    if len(args) != 2:
        print(usage, file=sys.stderr)
        return 1
    directory, port_text = args
    try:
        port = int(port_text)
    except ValueError:
        print(usage, file=sys.stderr)
        return 1
    try:
        server = FileServer(directory, "", port)
    except OSError as exc:
        print(f"Error starting server: {exc}", file=sys.stderr)
        return 1
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        print("\nServer exiting...")
    finally:
        server.close()
    return 0