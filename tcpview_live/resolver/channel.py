from __future__ import annotations
import logging
import os
import selectors
import subprocess
import sys
import time
from typing import Dict, List, Optional, Sequence

from ..errors import ChannelBroken, ElevationDenied, SpawnFailed, WireError
from ..models import ConnKey, ResolverReply, ResolverRequest
from . import wire

logger = logging.getLogger(__name__)

# pkexec: 126 = dialog dismissed / not authorized, 127 = authentication failed
ELEVATION_DENIED_CODES = (126, 127)

def helper_command() -> List[str]:
    return [sys.executable, "-m", "tcpview_live.main", "--rootmodule"]

class ResolverChannel:
    """Long-lived privileged helper process with a start/resolve/stop lifecycle.

    The helper is launched through ``elevate_cmd`` (pkexec by default) unless
    we already run as root. Requests for a whole snapshot go out as one line
    and come back as one line, so each tick costs a single round-trip.
    """

    def __init__(self, command: Optional[Sequence[str]] = None, elevate_cmd: str = "pkexec",
                 timeout: float = 5.0, start_timeout: float = 120.0):
        self.command = list(command) if command else helper_command()
        self.elevate_cmd = elevate_cmd
        self.timeout = timeout
        self.start_timeout = start_timeout
        self._proc: Optional[subprocess.Popen] = None
        self._buf = wire.LineBuffer()
        self._seq = 0
        self._pending: List[bytes] = []

    @property
    def running(self) -> bool:
        proc = self._proc
        return proc is not None and proc.poll() is None

    def argv(self) -> List[str]:
        if self.elevate_cmd and os.geteuid() != 0:
            return self.elevate_cmd.split() + self.command
        return list(self.command)

    def start(self) -> None:
        if self.running:
            return
        self._discard()
        argv = self.argv()
        logger.info("starting owner helper: %s", " ".join(argv))
        try:
            self._proc = subprocess.Popen(argv, stdin=subprocess.PIPE, stdout=subprocess.PIPE,
                                          stderr=subprocess.DEVNULL, bufsize=0)
        except OSError as e:
            self._proc = None
            raise SpawnFailed(f"cannot launch {argv[0]}: {e}") from e
        self._buf = wire.LineBuffer()
        self._pending = []

        try:
            msg = self._read_message(self.start_timeout)
        except ChannelBroken as e:
            code = self._reap()
            self._discard()
            if code in ELEVATION_DENIED_CODES:
                raise ElevationDenied(f"{argv[0]} exited with {code}") from e
            raise SpawnFailed(f"helper did not start (exit code {code}): {e}") from e

        if not msg.get("ready"):
            self._discard()
            raise SpawnFailed(f"unexpected handshake {msg!r}")
        logger.info("owner helper ready (pid %s, euid %s)", msg.get("pid"), msg.get("euid"))

    def resolve(self, batch: Sequence[ResolverRequest]) -> Dict[ConnKey, ResolverReply]:
        if not self.running:
            raise ChannelBroken("helper is not running")
        if not batch:
            return {}
        self._seq += 1
        seq = self._seq
        try:
            self._proc.stdin.write(wire.encode_request(seq, batch))
            self._proc.stdin.flush()
        except OSError as e:
            self._discard()
            raise ChannelBroken(f"write to helper failed: {e}") from e

        wanted = {r.key for r in batch}
        deadline = time.monotonic() + self.timeout
        while True:
            try:
                msg = self._read_message(deadline - time.monotonic())
            except ChannelBroken:
                self._discard()
                raise
            if "seq" not in msg:
                continue
            try:
                got, replies = wire.decode_reply(msg)
            except WireError as e:
                self._discard()
                raise ChannelBroken(f"bad reply from helper: {e}") from e
            if got != seq:
                logger.debug("dropping stale helper reply seq=%s (want %s)", got, seq)
                continue
            return {r.key: r for r in replies if r.key in wanted}

    def stop(self) -> None:
        proc = self._proc
        if proc is None:
            return
        try:
            if proc.stdin:
                proc.stdin.close()
        except OSError:
            pass
        try:
            proc.wait(timeout=1.0)
        except subprocess.TimeoutExpired:
            # an elevated child may refuse our signal; nothing more we can do
            try:
                proc.kill()
                proc.wait(timeout=1.0)
            except (OSError, subprocess.TimeoutExpired) as e:
                logger.warning("owner helper did not exit: %s", e)
        self._close_pipes(proc)
        self._proc = None
        logger.info("owner helper stopped")

    # ------------------------------------------------------------------

    def _read_message(self, timeout: float) -> dict:
        """Next complete record from the helper, or ChannelBroken on EOF/timeout."""
        proc = self._proc
        if proc is None or proc.stdout is None:
            raise ChannelBroken("helper is not running")
        deadline = time.monotonic() + max(timeout, 0.0)
        fd = proc.stdout.fileno()
        with selectors.DefaultSelector() as sel:
            sel.register(fd, selectors.EVENT_READ)
            while True:
                if self._pending:
                    line = self._pending.pop(0)
                    try:
                        return wire.decode_message(line)
                    except WireError as e:
                        raise ChannelBroken(str(e)) from e
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise ChannelBroken(f"no answer from helper within {timeout:.1f}s")
                if not sel.select(remaining):
                    continue
                try:
                    chunk = os.read(fd, 65536)
                except OSError as e:
                    raise ChannelBroken(f"read from helper failed: {e}") from e
                if not chunk:
                    raise ChannelBroken("helper closed its output")
                try:
                    self._pending.extend(self._buf.feed(chunk))
                except WireError as e:
                    raise ChannelBroken(str(e)) from e

    def _reap(self) -> Optional[int]:
        if self._proc is None:
            return None
        try:
            return self._proc.wait(timeout=1.0)
        except subprocess.TimeoutExpired:
            return None

    def _discard(self) -> None:
        """Drop a dead or misbehaving helper without the polite shutdown."""
        proc = self._proc
        self._proc = None
        self._pending = []
        if proc is None:
            return
        if proc.poll() is None:
            try:
                proc.kill()
                proc.wait(timeout=1.0)
            except (OSError, subprocess.TimeoutExpired) as e:
                logger.warning("could not kill owner helper: %s", e)
        self._close_pipes(proc)

    @staticmethod
    def _close_pipes(proc: subprocess.Popen) -> None:
        for f in (proc.stdin, proc.stdout):
            if f is None:
                continue
            try:
                f.close()
            except OSError:
                pass
