from __future__ import annotations

import subprocess
from pathlib import Path
from types import SimpleNamespace

import pytest

from adb_multinode.runtime.multinode import (
    CacheRecord,
    LavaMultiNode,
    MultiNodeError,
    group_by_sender,
    parse_cache,
    read_cache,
)


def test_parse_cache_with_and_without_sender_prefix() -> None:
    txt = (
        "dut-a:ipaddr=10.0.0.2:5555\n"
        "dut-a:worker=worker-a\n"
        "\n"
        "garbage line\n"
        "ipaddr=10.0.0.9:5555\n"
        "dut-b:note=a=b\n"
    )
    assert parse_cache(txt) == [
        CacheRecord(sender="dut-a", key="ipaddr", value="10.0.0.2:5555"),
        CacheRecord(sender="dut-a", key="worker", value="worker-a"),
        CacheRecord(sender=None, key="ipaddr", value="10.0.0.9:5555"),
        CacheRecord(sender="dut-b", key="note", value="a=b"),
    ]


def test_group_by_sender_keeps_first_seen_order_and_last_value() -> None:
    records = [
        CacheRecord("dut-b", "ipaddr", "10.0.0.3:5555"),
        CacheRecord("dut-a", "ipaddr", "10.0.0.2:5555"),
        CacheRecord("dut-b", "ipaddr", "10.0.0.4:5555"),
    ]
    grouped = group_by_sender(records)
    assert list(grouped) == ["dut-b", "dut-a"]
    assert grouped["dut-b"] == {"ipaddr": "10.0.0.4:5555"}


def test_read_cache_missing_file(tmp_path: Path) -> None:
    with pytest.raises(MultiNodeError, match="cache file not found"):
        read_cache(tmp_path / "missing.txt")


def test_sync_and_send_build_commands(monkeypatch) -> None:
    calls: list[list[str]] = []

    def fake_run(cmd, **kwargs):
        calls.append(cmd)
        return SimpleNamespace(stdout="", stderr="", returncode=0)

    monkeypatch.setattr(subprocess, "run", fake_run)

    mn = LavaMultiNode(sync_cmd="/usr/bin/lava-sync")
    mn.sync("adb-tcpip-done")
    mn.send("adb-tcpip-address", ipaddr="10.0.0.2:5555", worker="worker-a")

    assert calls == [
        ["/usr/bin/lava-sync", "adb-tcpip-done"],
        ["lava-send", "adb-tcpip-address", "ipaddr=10.0.0.2:5555", "worker=worker-a"],
    ]


@pytest.mark.parametrize("values", [{"ip addr": "x"}, {"ipaddr": "10.0.0.2 5555"}, {"ipaddr": ""}])
def test_send_rejects_malformed_messages_before_running(monkeypatch, values) -> None:
    def fake_run(cmd, **kwargs):
        raise AssertionError("lava-send must not run")

    monkeypatch.setattr(subprocess, "run", fake_run)
    with pytest.raises(MultiNodeError):
        LavaMultiNode().send("msg", **values)


def test_wait_all_reads_cache_after_primitive(monkeypatch, tmp_path: Path) -> None:
    cache = tmp_path / "lava_multi_node_cache.txt"
    calls: list[list[str]] = []

    def fake_run(cmd, **kwargs):
        calls.append(cmd)
        cache.write_text("dut-a:ipaddr=10.0.0.2:5555\n", encoding="utf-8")
        return SimpleNamespace(stdout="", stderr="", returncode=0)

    monkeypatch.setattr(subprocess, "run", fake_run)

    records = LavaMultiNode(cache_path=cache).wait_all("adb-tcpip-address", "device")
    assert calls == [["lava-wait-all", "adb-tcpip-address", "device"]]
    assert records == [CacheRecord("dut-a", "ipaddr", "10.0.0.2:5555")]


def test_missing_helper_is_reported(monkeypatch) -> None:
    def fake_run(cmd, **kwargs):
        raise FileNotFoundError(cmd[0])

    monkeypatch.setattr(subprocess, "run", fake_run)
    with pytest.raises(MultiNodeError, match="not found"):
        LavaMultiNode().sync("x")


def test_failing_helper_is_reported(monkeypatch) -> None:
    monkeypatch.setattr(
        subprocess,
        "run",
        lambda cmd, **kwargs: SimpleNamespace(stdout="", stderr="boom", returncode=3),
    )
    with pytest.raises(MultiNodeError, match="rc=3"):
        LavaMultiNode().sync("x")
