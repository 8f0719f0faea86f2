# chunkfs

A small distributed file store. The client splits every file into four
chunks and stores each chunk on two of four servers, so that a file can
still be fetched when one server is down.

## Installing

    pip install .

This installs two commands, `chunkfs-server` and `chunkfs-client`.
There are no third-party dependencies.

## Running the servers

Start four storage servers, each with its own directory and port:

    chunkfs-server ./store1 10001
    chunkfs-server ./store2 10002
    chunkfs-server ./store3 10003
    chunkfs-server ./store4 10004

A server creates its directory if it does not exist, listens on all
interfaces, and serves each connection on its own thread. On Ctrl-C it
stops accepting connections, waits up to ten seconds for open
connections to finish, and closes its socket.

## Configuring the client

The client reads `~/dfc.conf` (from the `HOME` environment variable),
one server per line:

    server dfs1 127.0.0.1:10001
    server dfs2 127.0.0.1:10002
    server dfs3 127.0.0.1:10003
    server dfs4 127.0.0.1:10004

Hosts must be IPv4 addresses. Lines beginning with `#` are ignored;
other lines that are not server entries are skipped with a warning. At
most four servers are connected, in the order they are listed, each with
a one-second timeout.

## Using the client

    chunkfs-client put report.pdf notes.txt
    chunkfs-client get report.pdf
    chunkfs-client list
    chunkfs-client list report.pdf

- `put` needs all four servers to be reachable. It reads the named local
  file and sends each chunk to both of its servers, waiting for an `OK`
  from each.
- `get` works with whichever servers are up. It writes the file under
  the name given, trying the second server of a chunk when the first
  fails, and removes the partial file if some chunk cannot be fetched.
- `list` prints every stored file in sorted order, followed by
  `[incomplete]` when some chunk is missing from all reachable servers.
  Given names, it reports only those files.

A failed `get` or `put` of one file is reported on standard error and
the client goes on with the next file.

## How chunks are placed

The MD5 digest of the file name selects one of four placement layouts.
Chunk `n` of a file is stored as `<name>.<n>` on the two servers that
layout gives for it. The pieces of this are in `chunkfs.protocol`:

- `hash_index(filename)` returns the layout (0–3),
- `chunk_servers(index, chunk)` returns the two server positions,
- `chunk_sizes(total)` and `split_chunks(data)` give the four sizes and
  byte ranges, the earlier chunks taking any remainder,
- `put_header`, `get_request`, `list_request` build requests, and
  `parse_command` reads the `Command` code (`LIST`, `GET`, `PUT`) at the
  start of one, raising `ProtocolError` if it has none.

## Using it from Python

    from chunkfs.client import DfcClient, load_config

    entries = load_config("dfc.conf")
    with DfcClient.connect(entries, 1.0) as client:
        client.put("report.pdf")
        for name, complete in client.list([]):
            print(name, complete)

`load_config` and `parse_config` return `ServerEntry` records (`name`,
`host`, `port`). `DfcClient.connect` raises `ConnectionError` when no
server can be reached; `put` raises `ConnectionError` with fewer than
four connections and `ProtocolError` when a server does not acknowledge
a chunk; `get` raises `ProtocolError` when a chunk is missing.
`summarize_listing(names, requested)` turns raw chunk names into the
`(file, complete)` pairs that `list` returns.

The server side is `chunkfs.server.FileServer(directory, host, port)`.
Port 0 picks a free port, reported in its `address` attribute. It has
`serve_forever()`, `close()`, `list_entries()`, and can be used as a
context manager.

## What it does not do

- There is no authentication or encryption; anyone who can reach a
  server can read, list and overwrite its chunks.
- A server's listing reply is limited to about 8 KiB, so a directory
  with very many chunks is listed only in part, and chunk names longer
  than 127 bytes are refused.
- Files cannot be deleted or renamed through the client, and there is
  no rebalancing when servers are added or replaced.