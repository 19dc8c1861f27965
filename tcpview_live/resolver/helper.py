"""Privileged helper: runs as root (via pkexec) and answers socket-owner lookups.

It reads request records on stdin and writes reply records on stdout, see
``wire``. Nothing else is accepted. It exits when stdin reaches EOF, which
happens when the parent closes the pipe or dies.
"""
from __future__ import annotations
import logging
import os
import sys
from typing import BinaryIO

from ..errors import WireError
from ..models import ResolverReply
from ..collectors.owners import resolve_inodes
from . import wire

logger = logging.getLogger(__name__)

def handle_line(line: bytes, proc_root: str = "/proc") -> bytes | None:
    try:
        seq, requests = wire.decode_request(wire.decode_message(line))
    except WireError as e:
        logger.warning("helper: dropping malformed request: %s", e)
        return None
    owners = resolve_inodes((r.inode for r in requests), proc_root)
    replies = []
    for r in requests:
        found = owners.get(r.inode)
        if found:
            pid, name, user = found
            replies.append(ResolverReply(key=r.key, pid=pid, name=name, user=user))
    return wire.encode_reply(seq, replies)

def serve(instream: BinaryIO, outstream: BinaryIO, proc_root: str = "/proc") -> int:
    outstream.write(wire.encode_ready(os.getpid(), os.geteuid()))
    outstream.flush()
    for line in instream:
        if not line.strip():
            continue
        reply = handle_line(line, proc_root)
        if reply is None:
            continue
        try:
            outstream.write(reply)
            outstream.flush()
        except BrokenPipeError:
            return 0
    return 0

def run(proc_root: str = "/proc") -> int:
    # stdout belongs to the protocol; diagnostics go to stderr
    logging.basicConfig(level=logging.WARNING, stream=sys.stderr,
                        format='%(asctime)s [%(levelname)s] helper: %(message)s')
    return serve(sys.stdin.buffer, sys.stdout.buffer, proc_root)
