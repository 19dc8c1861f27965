from __future__ import annotations
import platform

from .loop import collector_loop
from .linux import LinuxReader
from .generic import PsutilReader

def build_reader(cfg):
    if platform.system() == 'Linux':
        return LinuxReader(udp=cfg.udp_enabled, proc_root=str(cfg.proc_root))
    return PsutilReader(udp=cfg.udp_enabled)
