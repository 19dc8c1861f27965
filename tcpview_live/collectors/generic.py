from __future__ import annotations
import logging
import socket

import psutil

from ..errors import SourceUnavailable
from ..models import ConnKey, Snapshot, SnapshotEntry
from .owners import describe_process

logger = logging.getLogger(__name__)

_PROTO_MAP = {
    (socket.AF_INET, socket.SOCK_STREAM): "tcp",
    (socket.AF_INET6, socket.SOCK_STREAM): "tcp6",
    (socket.AF_INET, socket.SOCK_DGRAM): "udp",
    (socket.AF_INET6, socket.SOCK_DGRAM): "udp6",
}

def _endpoint(addr, family) -> tuple[str, int]:
    if not addr:
        return ("0.0.0.0" if family == socket.AF_INET else "::", 0)
    ip = addr.ip if hasattr(addr, 'ip') else addr[0]
    port = addr.port if hasattr(addr, 'port') else addr[1]
    return ip, port

class PsutilReader:
    """Connection table through psutil, for hosts without /proc/net."""

    def __init__(self, udp: bool = True):
        self.udp = udp

    def read(self) -> Snapshot:
        kind = 'inet' if self.udp else 'tcp'
        try:
            conns = psutil.net_connections(kind=kind)
        except psutil.AccessDenied as e:
            raise SourceUnavailable(f"net_connections: access denied ({e})") from e
        except OSError as e:
            raise SourceUnavailable(f"net_connections: {e}") from e

        snap = Snapshot()
        names: dict[int, tuple[str, str]] = {}
        for c in conns:
            proto = _PROTO_MAP.get((c.family, c.type))
            if proto is None:
                snap.skipped += 1
                continue
            laddr, lport = _endpoint(c.laddr, c.family)
            raddr, rport = _endpoint(c.raddr, c.family)
            key = ConnKey(proto, laddr, lport, raddr, rport)
            if key in snap.entries:
                continue
            state = str(c.status)
            if proto.startswith('udp'):
                state = "ESTABLISHED" if c.raddr else "UNCONN"
            entry = SnapshotEntry(state=state)
            if c.pid:
                if c.pid not in names:
                    names[c.pid] = describe_process(c.pid)
                entry.pid = c.pid
                entry.name, entry.user = names[c.pid]
            snap.entries[key] = entry
        if snap.skipped:
            logger.warning("net_connections: skipped %d socket(s) of unknown family", snap.skipped)
        return snap
