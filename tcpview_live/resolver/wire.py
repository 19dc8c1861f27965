"""Newline-delimited JSON records exchanged with the privileged helper.

    handshake  {"ready": true, "pid": 123, "euid": 0}
    request    {"seq": 7, "requests": [{"key": ["tcp", "127.0.0.1", 22, "10.0.0.5", 4444], "inode": 5581}]}
    reply      {"seq": 7, "replies":  [{"key": [...], "pid": 812, "name": "sshd", "user": "root"}]}

One record per line. orjson never emits a raw newline, so a line is always
one complete record.
"""
from __future__ import annotations
from typing import Iterable, List, Tuple

import orjson

from ..errors import WireError
from ..models import ConnKey, ResolverReply, ResolverRequest

MAX_LINE = 8 * 1024 * 1024

def _dumps(obj) -> bytes:
    return orjson.dumps(obj) + b"\n"

def key_to_wire(key: ConnKey) -> list:
    return list(key)

def key_from_wire(raw) -> ConnKey:
    try:
        proto, laddr, lport, raddr, rport = raw
        return ConnKey(str(proto), str(laddr), int(lport), str(raddr), int(rport))
    except (TypeError, ValueError) as e:
        raise WireError(f"bad key {raw!r}") from e

def encode_ready(pid: int, euid: int) -> bytes:
    return _dumps({"ready": True, "pid": pid, "euid": euid})

def encode_request(seq: int, requests: Iterable[ResolverRequest]) -> bytes:
    return _dumps({"seq": seq, "requests": [{"key": key_to_wire(r.key), "inode": r.inode} for r in requests]})

def encode_reply(seq: int, replies: Iterable[ResolverReply]) -> bytes:
    return _dumps({"seq": seq, "replies": [
        {"key": key_to_wire(r.key), "pid": r.pid, "name": r.name, "user": r.user} for r in replies]})

def decode_message(line: bytes) -> dict:
    try:
        msg = orjson.loads(line)
    except orjson.JSONDecodeError as e:
        raise WireError(f"undecodable record: {e}") from e
    if not isinstance(msg, dict):
        raise WireError(f"expected object, got {type(msg).__name__}")
    return msg

def decode_request(msg: dict) -> Tuple[int, List[ResolverRequest]]:
    try:
        seq = int(msg["seq"])
        out = [ResolverRequest(key=key_from_wire(r["key"]), inode=int(r["inode"])) for r in msg["requests"]]
    except (KeyError, TypeError, ValueError) as e:
        if isinstance(e, WireError):
            raise
        raise WireError(f"bad request: {e}") from e
    return seq, out

def decode_reply(msg: dict) -> Tuple[int, List[ResolverReply]]:
    try:
        seq = int(msg["seq"])
        out = [ResolverReply(key=key_from_wire(r["key"]), pid=int(r["pid"]),
                             name=str(r.get("name") or ""), user=str(r.get("user") or ""))
               for r in msg["replies"]]
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        if isinstance(e, WireError):
            raise
        raise WireError(f"bad reply: {e}") from e
    return seq, out

class LineBuffer:
    """Reassembles complete lines from arbitrarily split reads."""

    def __init__(self, max_line: int = MAX_LINE):
        self._buf = bytearray()
        self.max_line = max_line

    def feed(self, data: bytes) -> List[bytes]:
        self._buf += data
        lines: List[bytes] = []
        while True:
            nl = self._buf.find(b"\n")
            if nl < 0:
                break
            line = bytes(self._buf[:nl])
            del self._buf[:nl + 1]
            if line.strip():
                lines.append(line)
        if len(self._buf) > self.max_line:
            self._buf.clear()
            raise WireError(f"line exceeds {self.max_line} bytes")
        return lines

    @property
    def pending(self) -> int:
        return len(self._buf)
