from __future__ import annotations
import enum
import time
from dataclasses import dataclass, field
from typing import Dict, NamedTuple, Optional

class ConnKey(NamedTuple):
    proto: str  # 'tcp', 'tcp6', 'udp', 'udp6'
    laddr: str
    lport: int
    raddr: str
    rport: int

    def label(self) -> str:
        return f"{self.proto} {self.laddr}:{self.lport} -> {self.raddr}:{self.rport}"

class Marker(enum.Enum):
    ACTIVE = "active"
    PENDING_REMOVAL = "pending_removal"
    REMOVED = "removed"

@dataclass
class SnapshotEntry:
    state: str
    inode: Optional[int] = None
    uid: Optional[int] = None
    tx_queue: int = 0
    rx_queue: int = 0
    pid: Optional[int] = None
    name: str = ""
    user: str = ""

@dataclass
class Snapshot:
    entries: Dict[ConnKey, SnapshotEntry] = field(default_factory=dict)
    taken_at: float = field(default_factory=time.time)
    skipped: int = 0

@dataclass
class ResolverRequest:
    key: ConnKey
    inode: int

@dataclass
class ResolverReply:
    key: ConnKey
    pid: int
    name: str = ""
    user: str = ""

@dataclass
class ConnectionRecord:
    key: ConnKey
    state: str
    inode: Optional[int] = None
    uid: Optional[int] = None
    tx_queue: int = 0
    rx_queue: int = 0
    pid: Optional[int] = None
    name: str = ""
    user: str = ""
    marker: Marker = Marker.ACTIVE
    first_seen: float = 0.0
    last_seen: float = 0.0

    @classmethod
    def from_entry(cls, key: ConnKey, entry: SnapshotEntry, now: float) -> "ConnectionRecord":
        return cls(key=key, state=entry.state, inode=entry.inode, uid=entry.uid,
                   tx_queue=entry.tx_queue, rx_queue=entry.rx_queue,
                   pid=entry.pid, name=entry.name, user=entry.user,
                   marker=Marker.ACTIVE, first_seen=now, last_seen=now)

    @property
    def has_owner(self) -> bool:
        return self.pid is not None

    def set_owner(self, pid: Optional[int], name: str = "", user: str = "") -> bool:
        if (self.pid, self.name, self.user) == (pid, name, user):
            return False
        self.pid, self.name, self.user = pid, name, user
        return True

    def refresh(self, entry: SnapshotEntry, now: float) -> bool:
        """Overwrite the live attributes from a re-seen entry.

        Returns True when anything visible changed. ``last_seen`` is always
        bumped but does not count as a change.
        """
        changed = False
        if entry.inode != self.inode:
            # same 4-tuple, different socket: the old owner no longer applies
            self.inode = entry.inode
            self.set_owner(entry.pid, entry.name, entry.user)
            changed = True
        elif entry.pid is not None:
            changed |= self.set_owner(entry.pid, entry.name, entry.user)
        for attr in ("state", "uid", "tx_queue", "rx_queue"):
            val = getattr(entry, attr)
            if getattr(self, attr) != val:
                setattr(self, attr, val)
                changed = True
        if self.marker is not Marker.ACTIVE:
            self.marker = Marker.ACTIVE
            changed = True
        self.last_seen = now
        return changed

    def to_row(self) -> dict:
        return {
            'id': self.key.label(),
            'key': list(self.key),
            'proto': self.key.proto,
            'laddr': self.key.laddr,
            'lport': self.key.lport,
            'raddr': self.key.raddr,
            'rport': self.key.rport,
            'state': self.state,
            'pid': self.pid,
            'name': self.name,
            'user': self.user,
            'uid': self.uid,
            'inode': self.inode,
            'tx_queue': self.tx_queue,
            'rx_queue': self.rx_queue,
            'marker': self.marker.value,
            'first_seen': self.first_seen,
            'last_seen': self.last_seen,
        }

@dataclass
class EngineMode:
    paused: bool = False
    capturing: bool = False
    resolve_owners: bool = False
