"""adb controller utilities.

A *thin* wrapper around the `adb` CLI covering what the MultiNode handshake
needs:

  * switching a USB-attached device to TCP/IP debugging
  * connecting/disconnecting network devices
  * waiting for devices and reading their state

Notes
-----
* adb exits 0 on many failed `connect` attempts, so connection success is
  decided from the printed output, not the return code.
* Every call carries a timeout; a timeout surfaces as `AdbControllerError`.
"""

from __future__ import annotations

import logging
import re
import subprocess
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

logger = logging.getLogger(__name__)

DEFAULT_INTERFACES: tuple[str, ...] = ("wlan0", "eth0")

_TCP_ADDRESS_RE = re.compile(r"^[\w.\-\[\]:]+:\d{1,5}$")
_INET_RE = re.compile(r"\binet\s+(\d{1,3}(?:\.\d{1,3}){3})(?:/\d+)?")
_ROUTE_SRC_RE = re.compile(r"\bsrc\s+(\d{1,3}(?:\.\d{1,3}){3})\b")


class AdbControllerError(RuntimeError):
    """Raised when an adb operation fails."""


@dataclass(frozen=True)
class AdbResult:
    args: list[str]
    stdout: str
    stderr: str
    returncode: int

    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        return ((self.stdout or "") + "\n" + (self.stderr or "")).strip()


@dataclass(frozen=True)
class AdbDevice:
    serial: str
    state: str

    @property
    def is_tcp(self) -> bool:
        return is_tcp_address(self.serial)

    @property
    def ready(self) -> bool:
        return self.state == "device"


def is_tcp_address(serial: str) -> bool:
    """True for `host:port` serials (network devices), False for USB serials."""

    return bool(_TCP_ADDRESS_RE.match(str(serial).strip()))


def parse_adb_devices(txt: str) -> List[AdbDevice]:
    devices: list[AdbDevice] = []
    for raw in txt.splitlines():
        line = raw.strip()
        if not line or line.startswith("*") or line.startswith("List of devices attached"):
            continue
        parts = line.split()
        if len(parts) < 2:
            continue
        devices.append(AdbDevice(serial=parts[0], state=parts[1]))
    return devices


def _is_usable_ipv4(addr: str) -> bool:
    octets = addr.split(".")
    if len(octets) != 4:
        return False
    try:
        values = [int(o) for o in octets]
    except ValueError:
        return False
    if any(v < 0 or v > 255 for v in values):
        return False
    return values[0] not in (0, 127)


def parse_inet_address(txt: str) -> Optional[str]:
    """First non-loopback IPv4 address from `ip addr show` output."""

    for m in _INET_RE.finditer(txt):
        if _is_usable_ipv4(m.group(1)):
            return m.group(1)
    return None


def parse_route_src(txt: str) -> Optional[str]:
    """First non-loopback `src` address from `ip route` output."""

    for m in _ROUTE_SRC_RE.finditer(txt):
        if _is_usable_ipv4(m.group(1)):
            return m.group(1)
    return None


def _connect_succeeded(output: str) -> bool:
    text = output.lower()
    if any(marker in text for marker in ("failed", "unable", "cannot")):
        return False
    return "connected to" in text


class AdbController:
    """Thin wrapper around adb for the TCP/IP handshake."""

    def __init__(
        self,
        *,
        adb_path: str = "adb",
        serial: Optional[str] = None,
        timeout_s: float = 30.0,
    ) -> None:
        self._adb_path = adb_path
        self._serial = serial
        self._timeout_s = timeout_s

    @property
    def serial(self) -> Optional[str]:
        return self._serial

    def for_serial(self, serial: Optional[str]) -> "AdbController":
        return AdbController(adb_path=self._adb_path, serial=serial, timeout_s=self._timeout_s)

    def _base_cmd(self, *, device: bool = True) -> list[str]:
        cmd = [self._adb_path]
        if device and self._serial:
            cmd += ["-s", self._serial]
        return cmd

    def _run(
        self,
        cmd: list[str],
        *,
        timeout_s: float | None,
        check: bool,
    ) -> AdbResult:
        timeout = self._timeout_s if timeout_s is None else float(timeout_s)
        logger.debug("running: %s (timeout=%ss)", " ".join(cmd), timeout)
        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise AdbControllerError(
                f"adb command timed out after {timeout}s: {' '.join(cmd)}"
            ) from e
        except FileNotFoundError as e:
            raise AdbControllerError(f"adb not found: {self._adb_path}") from e

        result = AdbResult(
            args=cmd,
            stdout=proc.stdout or "",
            stderr=proc.stderr or "",
            returncode=proc.returncode,
        )
        if check and not result.ok():
            raise AdbControllerError(
                f"adb command failed (rc={result.returncode}): {' '.join(cmd)}\n"
                f"stdout: {result.stdout}\n"
                f"stderr: {result.stderr}"
            )
        return result

    def adb(self, *args: str, timeout_s: float | None = None, check: bool = True) -> AdbResult:
        """Run an adb command against the bound device (if any)."""

        return self._run(self._base_cmd() + list(args), timeout_s=timeout_s, check=check)

    def adb_global(
        self, *args: str, timeout_s: float | None = None, check: bool = True
    ) -> AdbResult:
        """Run an adb command that addresses the server, not a device."""

        return self._run(
            self._base_cmd(device=False) + list(args), timeout_s=timeout_s, check=check
        )

    def adb_shell(
        self, command: str, *, timeout_s: float | None = None, check: bool = True
    ) -> AdbResult:
        return self.adb("shell", command, timeout_s=timeout_s, check=check)

    # ------------------------------- Server -------------------------------

    def start_server(self) -> AdbResult:
        return self.adb_global("start-server")

    def kill_server(self) -> AdbResult:
        return self.adb_global("kill-server", check=False)

    def devices(self) -> List[AdbDevice]:
        res = self.adb_global("devices")
        return parse_adb_devices(res.stdout)

    # ------------------------------- TCP/IP -------------------------------

    def tcpip(self, port: int) -> AdbResult:
        """Restart adbd on the bound device listening on `port`."""

        return self.adb("tcpip", str(int(port)))

    def connect(self, address: str, *, timeout_s: float | None = None) -> bool:
        try:
            res = self.adb_global("connect", address, timeout_s=timeout_s, check=False)
        except AdbControllerError as e:
            logger.debug("adb connect %s: %s", address, e)
            return False
        connected = res.ok() and _connect_succeeded(res.output)
        logger.debug("adb connect %s -> %s (%s)", address, connected, res.output)
        return connected

    def disconnect(self, address: str, *, timeout_s: float | None = None) -> AdbResult:
        return self.adb_global("disconnect", address, timeout_s=timeout_s, check=False)

    # ------------------------------- State -------------------------------

    def wait_for_device(self, *, timeout_s: float) -> bool:
        """Block on `adb wait-for-device`; False when the timeout elapses."""

        try:
            res = self.adb("wait-for-device", timeout_s=timeout_s, check=False)
        except AdbControllerError as e:
            logger.debug("wait-for-device %s: %s", self._serial or "<any>", e)
            return False
        return res.ok()

    def get_state(self, *, timeout_s: float | None = None) -> Optional[str]:
        try:
            res = self.adb("get-state", timeout_s=timeout_s, check=False)
        except AdbControllerError:
            return None
        if not res.ok():
            return None
        return res.stdout.strip() or None

    def is_boot_completed(self, *, timeout_s: float | None = None) -> bool:
        try:
            res = self.adb_shell("getprop sys.boot_completed", timeout_s=timeout_s, check=False)
        except AdbControllerError:
            return False
        return res.ok() and res.stdout.strip() == "1"

    def get_ip_address(
        self,
        interfaces: Sequence[str] | Iterable[str] = DEFAULT_INTERFACES,
        *,
        timeout_s: float | None = None,
    ) -> Optional[str]:
        """Best-effort IPv4 address of the device (first matching interface)."""

        for iface in interfaces:
            res = self._try_shell(f"ip -f inet addr show {iface}", timeout_s=timeout_s)
            if res is not None and res.ok():
                addr = parse_inet_address(res.stdout)
                if addr:
                    return addr

        res = self._try_shell("ip route", timeout_s=timeout_s)
        if res is not None and res.ok():
            return parse_route_src(res.stdout)
        return None

    def _try_shell(self, command: str, *, timeout_s: float | None) -> Optional[AdbResult]:
        # adbd restarts after `tcpip`; a hung or refused shell is retried by the caller.
        try:
            return self.adb_shell(command, timeout_s=timeout_s, check=False)
        except AdbControllerError as e:
            logger.debug("%s: %s", command, e)
            return None
