from __future__ import annotations
import logging
import os
import socket
import struct
from typing import Dict, List, Tuple

from ..errors import PartialRead, SourceUnavailable
from ..models import ConnKey, Snapshot, SnapshotEntry
from .owners import resolve_inodes

logger = logging.getLogger(__name__)

TCP_STATE = {
    "01": "ESTABLISHED", "02": "SYN_SENT", "03": "SYN_RECV", "04": "FIN_WAIT1",
    "05": "FIN_WAIT2", "06": "TIME_WAIT", "07": "CLOSE", "08": "CLOSE_WAIT",
    "09": "LAST_ACK", "0A": "LISTEN", "0B": "CLOSING", "0C": "NEW_SYN_RECV",
}
UDP_STATE = {"01": "ESTABLISHED", "07": "UNCONN"}

# table name -> required?
TCP_TABLES = (("tcp", True), ("tcp6", False))
UDP_TABLES = (("udp", True), ("udp6", False))

HEADER_FIELDS = ("local_address", "rem_address", "st")

def _safe_int(s: str, base: int = 10, default: int = 0) -> int:
    try:
        return int(s, base)
    except (TypeError, ValueError):
        return default

def decode_addr(hex_addr: str) -> Tuple[str, int]:
    """
    Decode a /proc/net address field:
      - '0100007F:0016'                              -> ('127.0.0.1', 22)
      - '00000000000000000000000001000000:01BB'      -> ('::1', 443)
    Addresses are 32-bit words in host byte order.
    """
    ip_hex, port_hex = hex_addr.split(":")
    port = int(port_hex, 16)
    if len(ip_hex) == 8:
        return socket.inet_ntop(socket.AF_INET, struct.pack("=I", int(ip_hex, 16))), port
    if len(ip_hex) == 32:
        raw = b"".join(struct.pack("=I", int(ip_hex[i:i + 8], 16)) for i in range(0, 32, 8))
        return socket.inet_ntop(socket.AF_INET6, raw), port
    raise ValueError(f"bad address length {len(ip_hex)}")

def parse_line(table: str, line: str) -> Tuple[ConnKey, SnapshotEntry]:
    parts = line.split()
    if len(parts) < 10:
        raise PartialRead(table, line, "too few fields")
    try:
        laddr, lport = decode_addr(parts[1])
        raddr, rport = decode_addr(parts[2])
        st = parts[3].upper()
        tx, rx = parts[4].split(":")
        uid = int(parts[7])
        inode = int(parts[9])
    except (ValueError, OSError) as e:
        raise PartialRead(table, line, str(e)) from e
    states = TCP_STATE if table.startswith("tcp") else UDP_STATE
    entry = SnapshotEntry(
        state=states.get(st, st),
        inode=inode or None,
        uid=uid,
        tx_queue=_safe_int(tx, 16),
        rx_queue=_safe_int(rx, 16),
    )
    return ConnKey(table, laddr, lport, raddr, rport), entry

def read_table(path: str, table: str) -> Tuple[List[Tuple[ConnKey, SnapshotEntry]], int]:
    """Parse one /proc/net table. Returns (rows, skipped). Raises OSError/SourceUnavailable."""
    rows: List[Tuple[ConnKey, SnapshotEntry]] = []
    skipped = 0
    with open(path, "r", encoding="ascii", errors="replace") as fp:
        header = fp.readline()
        if not all(f in header for f in HEADER_FIELDS):
            raise SourceUnavailable(f"{path}: unexpected header {header.strip()!r}")
        for line in fp:
            if not line.strip():
                continue
            try:
                rows.append(parse_line(table, line))
            except PartialRead as e:
                skipped += 1
                logger.debug("%s", e)
    return rows, skipped

class LinuxReader:
    """Reads /proc/net/{tcp,tcp6,udp,udp6} into a Snapshot."""

    def __init__(self, udp: bool = True, proc_root: str = "/proc", local_owners: bool = True):
        self.udp = udp
        self.proc_root = proc_root
        self.local_owners = local_owners

    def tables(self) -> List[Tuple[str, bool]]:
        return list(TCP_TABLES) + (list(UDP_TABLES) if self.udp else [])

    def read(self) -> Snapshot:
        snap = Snapshot()
        for table, required in self.tables():
            path = os.path.join(self.proc_root, "net", table)
            try:
                rows, skipped = read_table(path, table)
            except FileNotFoundError as e:
                if required:
                    raise SourceUnavailable(f"{path}: {e.strerror}") from e
                continue
            except OSError as e:
                raise SourceUnavailable(f"{path}: {e.strerror or e}") from e
            if skipped:
                logger.warning("%s: skipped %d malformed row(s)", path, skipped)
            snap.skipped += skipped
            for key, entry in rows:
                if key in snap.entries:
                    # e.g. SO_REUSEPORT listeners share a 4-tuple
                    continue
                snap.entries[key] = entry

        if self.local_owners:
            self._fill_owners(snap)
        return snap

    def _fill_owners(self, snap: Snapshot) -> None:
        by_inode: Dict[int, ConnKey] = {e.inode: k for k, e in snap.entries.items() if e.inode}
        owners = resolve_inodes(by_inode.keys(), self.proc_root)
        for inode, (pid, name, user) in owners.items():
            entry = snap.entries[by_inode[inode]]
            entry.pid, entry.name, entry.user = pid, name, user
