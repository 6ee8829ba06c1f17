"""Android runtime helpers.

Only *thin* wrappers around the adb CLI live here; the handshake logic that
strings them together is in `adb_multinode.handshake`.
"""
