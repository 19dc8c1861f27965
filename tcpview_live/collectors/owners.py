from __future__ import annotations
import logging
import os
import re
from typing import Dict, Iterable, Optional, Set, Tuple

import psutil

logger = logging.getLogger(__name__)

SOCKET_RE = re.compile(r"socket:\[(\d+)\]")

def build_inode_pid_map(wanted: Optional[Set[int]] = None, proc_root: str = "/proc") -> Dict[int, int]:
    """Map socket inode -> pid by walking /proc/<pid>/fd.

    Directories we may not read (other users' processes when unprivileged)
    are skipped silently. If ``wanted`` is given, the walk stops once every
    requested inode is found.
    """
    inode_pid: Dict[int, int] = {}
    try:
        pids = [p for p in os.listdir(proc_root) if p.isdigit()]
    except OSError as e:
        logger.debug("cannot list %s: %s", proc_root, e)
        return inode_pid

    for pid in pids:
        fd_dir = os.path.join(proc_root, pid, "fd")
        try:
            fds = os.listdir(fd_dir)
        except OSError:
            continue
        for fd in fds:
            try:
                link = os.readlink(os.path.join(fd_dir, fd))
            except OSError:
                continue
            m = SOCKET_RE.match(link)
            if not m:
                continue
            inode = int(m.group(1))
            if wanted is not None and inode not in wanted:
                continue
            inode_pid.setdefault(inode, int(pid))
        if wanted is not None and len(inode_pid) >= len(wanted):
            break
    return inode_pid

def describe_process(pid: int) -> Tuple[str, str]:
    """(executable name, user) for pid; empty strings where unavailable."""
    name = ""; user = ""
    try:
        p = psutil.Process(pid)
        name = p.name()
        try:
            user = p.username()
        except (psutil.AccessDenied, KeyError):
            user = ""
    except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
        pass
    return name, user

def resolve_inodes(inodes: Iterable[int], proc_root: str = "/proc") -> Dict[int, Tuple[int, str, str]]:
    """inode -> (pid, name, user) for every inode whose owner is visible."""
    wanted = {i for i in inodes if i}
    if not wanted:
        return {}
    out: Dict[int, Tuple[int, str, str]] = {}
    names: Dict[int, Tuple[str, str]] = {}
    for inode, pid in build_inode_pid_map(wanted, proc_root).items():
        if pid not in names:
            names[pid] = describe_process(pid)
        name, user = names[pid]
        out[inode] = (pid, name, user)
    return out
