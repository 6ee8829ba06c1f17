"""adb-multinode.

Connects Android devices spread over the worker hosts of a LAVA MultiNode
job group to a single host worker over adb TCP/IP:

- device workers enable TCP/IP debugging and publish the device address
- the host worker connects to every published device and writes a
  `device;worker` mapping file for later test steps
"""

__all__ = [
    "cli",
    "config",
    "handshake",
    "mapping",
    "runtime",
]
