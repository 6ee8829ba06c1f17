from __future__ import annotations

import subprocess
from types import SimpleNamespace

import pytest

from adb_multinode.runtime.android.controller import (
    AdbController,
    AdbControllerError,
    AdbDevice,
    AdbResult,
    is_tcp_address,
    parse_adb_devices,
    parse_inet_address,
    parse_route_src,
)


def _fake_run_returning(stdout: str = "", stderr: str = "", returncode: int = 0, calls=None):
    def fake_run(cmd, **kwargs):
        if calls is not None:
            calls.append({"cmd": cmd, "kwargs": kwargs})
        return SimpleNamespace(stdout=stdout, stderr=stderr, returncode=returncode)

    return fake_run


def test_parse_adb_devices_skips_header_and_daemon_lines() -> None:
    out = (
        "* daemon not running; starting now at tcp:5037\n"
        "* daemon started successfully\n"
        "List of devices attached\n"
        "0123456789ABCDEF\tdevice\n"
        "192.168.1.20:5555\tdevice\n"
        "FEDCBA\tunauthorized\n"
        "\n"
    )
    assert parse_adb_devices(out) == [
        AdbDevice(serial="0123456789ABCDEF", state="device"),
        AdbDevice(serial="192.168.1.20:5555", state="device"),
        AdbDevice(serial="FEDCBA", state="unauthorized"),
    ]


@pytest.mark.parametrize(
    "serial,expected",
    [
        ("192.168.1.20:5555", True),
        ("dut-host.lab:5555", True),
        ("0123456789ABCDEF", False),
        ("emulator-5554", False),
        ("192.168.1.20", False),
    ],
)
def test_is_tcp_address(serial: str, expected: bool) -> None:
    assert is_tcp_address(serial) is expected
    assert AdbDevice(serial=serial, state="device").is_tcp is expected


def test_parse_inet_address_skips_loopback() -> None:
    out = (
        "1: lo: <LOOPBACK,UP,LOWER_UP> mtu 65536\n"
        "    inet 127.0.0.1/8 scope host lo\n"
        "3: eth0: <BROADCAST,MULTICAST,UP,LOWER_UP> mtu 1500\n"
        "    inet 10.7.0.42/24 brd 10.7.0.255 scope global eth0\n"
    )
    assert parse_inet_address(out) == "10.7.0.42"
    assert parse_inet_address("Device \"wlan0\" does not exist.\n") is None


def test_parse_route_src() -> None:
    out = "10.7.0.0/24 dev eth0 proto kernel scope link src 10.7.0.42\n"
    assert parse_route_src(out) == "10.7.0.42"
    assert parse_route_src("local 127.0.0.1 dev lo src 127.0.0.1\n") is None


def test_adb_prefixes_serial_but_server_commands_do_not(monkeypatch) -> None:
    calls: list[dict] = []
    monkeypatch.setattr(subprocess, "run", _fake_run_returning(calls=calls))

    ctr = AdbController(adb_path="/opt/adb", serial="USB123", timeout_s=7.0)
    ctr.tcpip(5555)
    ctr.kill_server()

    assert calls[0]["cmd"] == ["/opt/adb", "-s", "USB123", "tcpip", "5555"]
    assert calls[0]["kwargs"]["timeout"] == 7.0
    assert calls[1]["cmd"] == ["/opt/adb", "kill-server"]


def test_adb_check_raises_on_failure(monkeypatch) -> None:
    monkeypatch.setattr(
        subprocess,
        "run",
        _fake_run_returning(stderr="error: no devices/emulators found", returncode=1),
    )
    ctr = AdbController(serial="USB123")
    with pytest.raises(AdbControllerError, match="rc=1"):
        ctr.tcpip(5555)


def test_adb_timeout_is_reported_as_controller_error(monkeypatch) -> None:
    def fake_run(cmd, **kwargs):
        raise subprocess.TimeoutExpired(cmd, kwargs.get("timeout"))

    monkeypatch.setattr(subprocess, "run", fake_run)
    ctr = AdbController(serial="USB123")

    with pytest.raises(AdbControllerError, match="timed out"):
        ctr.adb("get-state")
    assert ctr.wait_for_device(timeout_s=1.0) is False
    assert ctr.get_state() is None


def test_missing_adb_binary(monkeypatch) -> None:
    def fake_run(cmd, **kwargs):
        raise FileNotFoundError(cmd[0])

    monkeypatch.setattr(subprocess, "run", fake_run)
    with pytest.raises(AdbControllerError, match="adb not found"):
        AdbController(adb_path="nope").devices()


@pytest.mark.parametrize(
    "stdout,expected",
    [
        ("connected to 10.0.0.2:5555\n", True),
        ("already connected to 10.0.0.2:5555\n", True),
        ("failed to connect to '10.0.0.2:5555': Connection refused\n", False),
        ("unable to connect to 10.0.0.2:5555: Connection timed out\n", False),
        ("cannot connect to 10.0.0.2:5555: No route to host (113)\n", False),
        ("connected to 10.0.0.2:5555\nerror: closed\n", True),
        ("error: device offline\n", False),
        ("", False),
    ],
)
def test_connect_decides_from_output_not_returncode(
    monkeypatch, stdout: str, expected: bool
) -> None:
    calls: list[dict] = []
    monkeypatch.setattr(subprocess, "run", _fake_run_returning(stdout=stdout, calls=calls))

    ctr = AdbController(serial="USB123")
    assert ctr.connect("10.0.0.2:5555") is expected
    assert calls[0]["cmd"] == ["adb", "connect", "10.0.0.2:5555"]


def test_wait_for_device_and_boot_completed(monkeypatch) -> None:
    def fake_run(cmd, **kwargs):
        if cmd[-1] == "getprop sys.boot_completed":
            return SimpleNamespace(stdout="1\r\n", stderr="", returncode=0)
        return SimpleNamespace(stdout="", stderr="", returncode=0)

    monkeypatch.setattr(subprocess, "run", fake_run)
    ctr = AdbController().for_serial("10.0.0.2:5555")
    assert ctr.serial == "10.0.0.2:5555"
    assert ctr.wait_for_device(timeout_s=3.0) is True
    assert ctr.is_boot_completed() is True


def test_get_ip_address_falls_back_to_route(monkeypatch) -> None:
    shell_cmds: list[str] = []

    def fake_adb_shell(command: str, **kwargs) -> AdbResult:
        shell_cmds.append(command)
        if command == "ip route":
            return AdbResult(
                args=["adb", "shell", command],
                stdout="192.168.42.0/24 dev rndis0 proto kernel scope link src 192.168.42.129\n",
                stderr="",
                returncode=0,
            )
        return AdbResult(args=["adb", "shell", command], stdout="", stderr="", returncode=1)

    ctr = AdbController(serial="USB123")
    monkeypatch.setattr(ctr, "adb_shell", fake_adb_shell)

    assert ctr.get_ip_address(["wlan0", "eth0"]) == "192.168.42.129"
    assert shell_cmds == [
        "ip -f inet addr show wlan0",
        "ip -f inet addr show eth0",
        "ip route",
    ]


def test_devices_parses_server_listing(monkeypatch) -> None:
    monkeypatch.setattr(
        subprocess,
        "run",
        _fake_run_returning(
            stdout="List of devices attached\nUSB123\tdevice\n10.0.0.2:5555\toffline\n"
        ),
    )
    devices = AdbController().devices()
    assert [(d.serial, d.ready, d.is_tcp) for d in devices] == [
        ("USB123", True, False),
        ("10.0.0.2:5555", False, True),
    ]


def test_get_ip_address_moves_past_a_hung_shell(monkeypatch) -> None:
    shell_cmds: list[str] = []

    def fake_run(cmd, **kwargs):
        shell_cmds.append(cmd[-1])
        if cmd[-1] == "ip -f inet addr show wlan0":
            raise subprocess.TimeoutExpired(cmd, kwargs.get("timeout"))
        out = "    inet 10.0.0.5/24 scope global eth0\n"
        return SimpleNamespace(stdout=out, stderr="", returncode=0)

    monkeypatch.setattr(subprocess, "run", fake_run)
    ctr = AdbController(serial="USB123")

    assert ctr.get_ip_address(["wlan0", "eth0"]) == "10.0.0.5"
    assert shell_cmds == ["ip -f inet addr show wlan0", "ip -f inet addr show eth0"]


def test_get_ip_address_returns_none_when_every_shell_times_out(monkeypatch) -> None:
    def fake_run(cmd, **kwargs):
        raise subprocess.TimeoutExpired(cmd, kwargs.get("timeout"))

    monkeypatch.setattr(subprocess, "run", fake_run)
    assert AdbController(serial="USB123").get_ip_address(["wlan0"]) is None
