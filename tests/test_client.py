import socket
import threading
from pathlib import Path

import pytest

from chunkfs.client import (
    DfcClient,
    ServerEntry,
    load_config,
    main,
    parse_config,
    summarize_listing,
)
from chunkfs.protocol import ProtocolError, chunk_servers, hash_index, split_chunks
from chunkfs.server import FileServer


def _sample(length):
    return bytes((i * 7 + 3) % 256 for i in range(length))


@pytest.fixture
def servers(tmp_path):
    started = []
    for number in range(4):
        server = FileServer(tmp_path / f"dfs{number + 1}", "127.0.0.1", 0)
        thread = threading.Thread(target=server.serve_forever, daemon=True)
        thread.start()
        started.append((server, thread))
    yield [server for server, _thread in started]
    for server, thread in started:
        server.close()
        thread.join(5)


@pytest.fixture
def entries(servers):
    return [
        ServerEntry(f"dfs{number + 1}", "127.0.0.1", server.address[1])
        for number, server in enumerate(servers)
    ]


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    work = tmp_path / "work"
    work.mkdir()
    monkeypatch.chdir(work)
    return work


def _free_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def test_parse_config_reads_server_lines_and_skips_comments(capsys):
    lines = [
        "# comment\n",
        "\n",
        "server dfs1 127.0.0.1:10001\n",
        "garbage\n",
        "  server dfs2 localhost:10002\n",
    ]
    entries = parse_config(lines)
    assert entries == [
        ServerEntry("dfs1", "127.0.0.1", 10001),
        ServerEntry("dfs2", "localhost", 10002),
    ]
    err = capsys.readouterr().err
    assert err.count("Skipping malformed line") == 1
    assert "garbage" in err


def test_parse_config_rejects_line_without_port(capsys):
    assert parse_config(["server dfs1 127.0.0.1\n"]) == []
    assert "malformed" in capsys.readouterr().err


def test_load_config_reads_file(tmp_path):
    path = tmp_path / "dfc.conf"
    path.write_text("server dfs3 127.0.0.1:10003\nserver dfs4 127.0.0.1:10004\n")
    assert load_config(path) == [
        ServerEntry("dfs3", "127.0.0.1", 10003),
        ServerEntry("dfs4", "127.0.0.1", 10004),
    ]


def test_load_config_missing_file_raises(tmp_path):
    with pytest.raises(OSError):
        load_config(tmp_path / "absent.conf")


def test_summarize_listing_complete_file():
    names = ["a.txt.3", "a.txt.1", "a.txt.0", "a.txt.2"]
    assert summarize_listing(names, None) == [("a.txt", True)]


def test_summarize_listing_marks_missing_chunks_and_merges_duplicates():
    names = ["b.0", "b.1", "b.1", "b.3", "a.txt.0", "a.txt.1", "a.txt.2", "a.txt.3", "a.txt.0"]
    assert summarize_listing(names, []) == [("a.txt", True), ("b", False)]


def test_summarize_listing_filters_requested():
    names = ["x.0", "x.1", "x.2", "x.3", "y.0"]
    assert summarize_listing(names, ["y", "missing"]) == [("y", False)]
    assert summarize_listing([], None) == []


def test_connect_without_reachable_servers_raises(capsys):
    entries = [
        ServerEntry("dfs1", "not-an-ip", 1),
        ServerEntry("dfs2", "127.0.0.1", _free_port()),
    ]
    with pytest.raises(ConnectionError):
        DfcClient.connect(entries, 1.0)
    err = capsys.readouterr().err
    assert "Invalid address/format for server dfs1" in err
    assert "Connection failed for dfs2" in err


def test_connect_uses_at_most_four_servers(entries):
    with DfcClient.connect(entries + entries[:1], 1.0) as client:
        assert len(client.connections) == 4


def test_put_needs_four_servers():
    with pytest.raises(ConnectionError):
        DfcClient([]).put("anything.txt")


def test_put_stores_each_chunk_on_its_two_servers(servers, entries, workdir):
    name = "data.bin"
    data = _sample(50003)
    Path(name).write_bytes(data)
    with DfcClient.connect(entries, 1.0) as client:
        client.put(name)
    index = hash_index(name)
    for chunk, payload in enumerate(split_chunks(data)):
        holders = set(chunk_servers(index, chunk))
        for number, server in enumerate(servers):
            stored = server.directory / f"{name}.{chunk}"
            assert stored.exists() == (number in holders)
            if number in holders:
                assert stored.read_bytes() == payload


def test_put_then_get_round_trip(entries, workdir):
    name = "roundtrip.bin"
    data = _sample(50003)
    Path(name).write_bytes(data)
    with DfcClient.connect(entries, 1.0) as client:
        client.put(name)
    with DfcClient.connect(entries, 1.0) as client:
        assert client.list([name]) == [(name, True)]
    Path(name).unlink()
    with DfcClient.connect(entries, 1.0) as client:
        client.get(name)
    assert Path(name).read_bytes() == data


def test_empty_file_round_trip(entries, workdir):
    name = "empty.txt"
    Path(name).write_bytes(b"")
    with DfcClient.connect(entries, 1.0) as client:
        client.put(name)
    with DfcClient.connect(entries, 1.0) as client:
        assert client.list(None) == [(name, True)]
    Path(name).unlink()
    with DfcClient.connect(entries, 1.0) as client:
        client.get(name)
    assert Path(name).read_bytes() == b""


def test_get_falls_back_to_second_server(servers, entries, workdir):
    name = "fallback.txt"
    data = _sample(1001)
    Path(name).write_bytes(data)
    with DfcClient.connect(entries, 1.0) as client:
        client.put(name)
    primary, _secondary = chunk_servers(hash_index(name), 0)
    (servers[primary].directory / f"{name}.0").unlink()
    Path(name).unlink()
    with DfcClient.connect(entries, 1.0) as client:
        assert client.list([name]) == [(name, True)]
    with DfcClient.connect(entries, 1.0) as client:
        client.get(name)
    assert Path(name).read_bytes() == data


def test_list_and_get_report_missing_chunk(servers, entries, workdir):
    complete, broken = "whole.txt", "broken.txt"
    Path(complete).write_bytes(_sample(400))
    Path(broken).write_bytes(_sample(401))
    with DfcClient.connect(entries, 1.0) as client:
        client.put(complete)
        client.put(broken)
    for server in chunk_servers(hash_index(broken), 2):
        (servers[server].directory / f"{broken}.2").unlink()
    with DfcClient.connect(entries, 1.0) as client:
        assert client.list(None) == [(broken, False), (complete, True)]
        assert client.list([complete]) == [(complete, True)]
    with DfcClient.connect(entries, 1.0) as client:
        with pytest.raises(ProtocolError):
            client.get(broken)
    assert not Path(broken).exists()


def test_main_usage_errors(monkeypatch, tmp_path, capsys):
    assert main([]) == 1
    assert main(["bogus"]) == 0
    assert "Commands:" in capsys.readouterr().err
    monkeypatch.delenv("HOME", raising=False)
    assert main(["list"]) == 1
    monkeypatch.setenv("HOME", str(tmp_path))
    assert main(["list"]) == 1
    assert "Error opening config file" in capsys.readouterr().err


def _write_config(home, entries):
    home.mkdir()
    lines = [f"server {entry.name} {entry.host}:{entry.port}\n" for entry in entries]
    (home / "dfc.conf").write_text("".join(lines))


def test_main_put_list_get(entries, workdir, tmp_path, monkeypatch, capsys):
    home = tmp_path / "home"
    _write_config(home, entries)
    monkeypatch.setenv("HOME", str(home))
    name = "main.txt"
    data = _sample(9000)
    Path(name).write_bytes(data)
    assert main(["put", name]) == 0
    assert main(["list"]) == 0
    assert f"{name}\n" in capsys.readouterr().out
    Path(name).unlink()
    assert main(["get", name]) == 0
    assert Path(name).read_bytes() == data


def test_main_put_refuses_with_three_servers(entries, workdir, tmp_path, monkeypatch, capsys):
    home = tmp_path / "home"
    _write_config(home, entries[:3])
    monkeypatch.setenv("HOME", str(home))
    Path("three.txt").write_bytes(b"abc")
    assert main(["put", "three.txt"]) == 1
    assert "Not enough servers connected (3)" in capsys.readouterr().err