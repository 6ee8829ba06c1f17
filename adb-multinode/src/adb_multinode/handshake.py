"""adb TCP/IP handshake across a LAVA MultiNode group.

Device workers (jobs that own a USB-attached DUT):

  enable_tcpip -> [release local adb] -> lava-send address -> lava-sync done

Host worker (the job that drives every DUT):

  lava-wait-all address -> connect each DUT -> wait ready -> merge local DUTs
  -> write mapping file -> ... run tests ... -> release_workers (lava-sync done)

The device workers stay blocked on the `done` barrier for as long as the host
worker needs their DUTs; `release_workers` is what lets them finish.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from adb_multinode.config.settings import MultiNodeSettings
from adb_multinode.mapping import (
    DeviceMapping,
    MappingFormatError,
    check_field,
    dedupe,
    write_mapping,
)
from adb_multinode.runtime.android.controller import (
    DEFAULT_INTERFACES,
    AdbController,
    is_tcp_address,
)
from adb_multinode.runtime.multinode import LavaMultiNode, group_by_sender
from adb_multinode.runtime.retry import poll_until, retry

logger = logging.getLogger(__name__)

ADDRESS_KEY = "ipaddr"
WORKER_KEY = "worker"
UNKNOWN_WORKER = "unknown"


class HandshakeError(RuntimeError):
    """Raised when the handshake cannot complete within its retry bounds."""


def enable_tcpip(
    controller: AdbController,
    *,
    port: int = 5555,
    interfaces: Sequence[str] = DEFAULT_INTERFACES,
    timeout_s: float = 300.0,
    interval_s: float = 5.0,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> str:
    """Switch the local DUT to TCP/IP debugging and return its `host:port`.

    Retries until the network address answers as an adb device or
    `timeout_s` elapses (shared by all phases).
    """

    deadline = clock() + float(timeout_s)

    def remaining() -> float:
        return max(0.0, deadline - clock())

    who = controller.serial or "<local device>"
    if not controller.wait_for_device(timeout_s=max(remaining(), 1.0)):
        raise HandshakeError(f"{who}: device not found within {timeout_s}s")

    controller.tcpip(port)
    logger.info("%s: adbd switched to tcpip mode on port %s", who, port)

    ip_holder: list[str] = []

    def resolve_ip() -> bool:
        ip = controller.get_ip_address(interfaces)
        if ip:
            ip_holder.append(ip)
            return True
        logger.debug("%s: no IPv4 address yet on %s", who, ",".join(interfaces))
        return False

    if not poll_until(
        resolve_ip, timeout_s=remaining(), interval_s=interval_s, clock=clock, sleep=sleep
    ):
        raise HandshakeError(
            f"{who}: unable to derive an IPv4 address from {', '.join(interfaces)}"
        )

    address = f"{ip_holder[-1]}:{int(port)}"
    network_device = controller.for_serial(address)

    def reachable() -> bool:
        if not controller.connect(address):
            return False
        return network_device.get_state() == "device"

    if not poll_until(
        reachable, timeout_s=remaining(), interval_s=interval_s, clock=clock, sleep=sleep
    ):
        raise HandshakeError(f"{who}: {address} not reachable over adb within {timeout_s}s")

    logger.info("%s: reachable as %s", who, address)
    return address


def publish_device(
    controller: AdbController,
    multinode: LavaMultiNode,
    settings: MultiNodeSettings,
    *,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> str:
    """Device-worker side: expose the local DUT and wait for the host worker."""

    address = enable_tcpip(
        controller,
        port=settings.tcpip_port,
        interfaces=settings.interfaces,
        timeout_s=settings.tcpip_timeout_s,
        interval_s=settings.poll_interval_s,
        clock=clock,
        sleep=sleep,
    )

    if settings.release_local_adb:
        controller.disconnect(address)
        controller.kill_server()
        logger.info("local adb server stopped; %s left to the host worker", address)

    multinode.send(
        settings.publish_message_id,
        **{ADDRESS_KEY: address, WORKER_KEY: settings.local_worker_id},
    )
    multinode.sync(settings.done_message_id)
    return address


def published_devices(
    multinode: LavaMultiNode, settings: MultiNodeSettings
) -> List[Tuple[str, str]]:
    """Wait for every device worker and return `(address, worker)` pairs.

    A sender whose address or worker cannot go into the mapping file is
    skipped before anything is connected, or fails the run under `require_all`.
    """

    records = multinode.wait_all(settings.publish_message_id, settings.role)
    out: list[Tuple[str, str]] = []
    for sender, values in group_by_sender(records).items():
        address = values.get(ADDRESS_KEY)
        if not address:
            logger.warning("sender %s published no %s; skipped", sender, ADDRESS_KEY)
            continue
        worker = values.get(WORKER_KEY) or sender or UNKNOWN_WORKER
        try:
            out.append(
                (check_field(address, name="address"), check_field(worker, name="worker"))
            )
        except MappingFormatError as e:
            if settings.require_all:
                raise HandshakeError(f"sender {sender}: {e}") from e
            logger.warning("sender %s: %s; skipped", sender, e)
    return out


def _connect_remote(
    controller: AdbController,
    address: str,
    settings: MultiNodeSettings,
    *,
    clock: Callable[[], float],
    sleep: Callable[[float], None],
) -> Optional[str]:
    """Return None on success or a failure reason."""

    def attempt() -> bool:
        controller.disconnect(address)
        return controller.connect(address)

    connected = retry(
        attempt,
        attempts=settings.connect_attempts,
        interval_s=settings.poll_interval_s,
        sleep=sleep,
    )
    if not connected:
        return f"adb connect failed after {settings.connect_attempts} attempt(s)"

    device = controller.for_serial(address)
    if not device.wait_for_device(timeout_s=settings.wait_for_device_timeout_s):
        return f"wait-for-device timed out after {settings.wait_for_device_timeout_s}s"

    if not poll_until(
        device.is_boot_completed,
        timeout_s=settings.boot_timeout_s,
        interval_s=settings.poll_interval_s,
        clock=clock,
        sleep=sleep,
    ):
        return f"sys.boot_completed not set after {settings.boot_timeout_s}s"
    return None


def connect_remote_devices(
    controller: AdbController,
    multinode: LavaMultiNode,
    settings: MultiNodeSettings,
    *,
    mapping_file: Optional[Path] = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> List[DeviceMapping]:
    """Host-worker side: connect every published DUT and build the mapping."""

    published = published_devices(multinode, settings)
    logger.info("%d device(s) published", len(published))

    controller.start_server()

    mappings: list[DeviceMapping] = []
    for address, worker in published:
        reason = _connect_remote(controller, address, settings, clock=clock, sleep=sleep)
        if reason is not None:
            if settings.require_all:
                raise HandshakeError(f"{address} ({worker}): {reason}")
            logger.warning("%s (%s): %s; skipped", address, worker, reason)
            continue
        logger.info("%s (%s): ready", address, worker)
        mappings.append(DeviceMapping(device=address, worker=worker))

    local_worker = settings.local_worker_id
    for dev in controller.devices():
        if dev.ready and not dev.is_tcp:
            mappings.append(DeviceMapping(device=dev.serial, worker=local_worker))

    mappings = dedupe(mappings)
    if not mappings:
        raise HandshakeError("no usable devices: nothing published and nothing attached locally")

    if mapping_file is not None:
        write_mapping(mapping_file, mappings)
        logger.info("wrote %d mapping record(s) to %s", len(mappings), mapping_file)
    return mappings


def release_workers(
    controller: AdbController,
    multinode: LavaMultiNode,
    settings: MultiNodeSettings,
    mappings: Iterable[DeviceMapping] = (),
) -> None:
    """Drop network sessions and let the device workers leave the barrier."""

    for m in mappings:
        if is_tcp_address(m.device):
            controller.disconnect(m.device)
    multinode.sync(settings.done_message_id)
