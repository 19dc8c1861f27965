from __future__ import annotations
import argparse
import logging
import sys

from .config import init_cfg_from_args
from .errors import ConfigError
from .collectors import build_reader
from .resolver import ResolverChannel
from .tracking import ConnectionTracker
from .models import EngineMode
from .web import create_app

logger = logging.getLogger(__name__)

def _bool_flag(ap, name: str, help: str):
    ap.add_argument(f'--{name}', dest=name.replace('-', '_'), action='store_true', default=None, help=help)
    ap.add_argument(f'--no-{name}', dest=name.replace('-', '_'), action='store_false', default=None, help=argparse.SUPPRESS)

def parse_args(argv=None):
    ap = argparse.ArgumentParser(description='Live TCP/UDP connection viewer')
    ap.add_argument('--config', type=str, default=None, help='YAML or JSON config file')
    ap.add_argument('--host', type=str, default=None, help='bind address (default 127.0.0.1)')
    ap.add_argument('--port', type=int, default=None)
    ap.add_argument('--interval', type=float, default=None, help='seconds between snapshots')
    _bool_flag(ap, 'udp', 'include UDP sockets (on by default, --no-udp to drop them)')
    _bool_flag(ap, 'capture', 'start with capture on: closed connections stay listed')
    _bool_flag(ap, 'resolve-owners', 'start the privileged helper right away to name socket owners')
    ap.add_argument('--elevate-cmd', type=str, default=None, help='privilege escalation command (default pkexec)')
    ap.add_argument('--helper-timeout', type=float, default=None)
    ap.add_argument('--helper-start-timeout', type=float, default=None)
    ap.add_argument('--resolver-cooldown', type=float, default=None)
    ap.add_argument('--failure-threshold', type=int, default=None)
    ap.add_argument('--proc-root', type=str, default=None, help=argparse.SUPPRESS)
    ap.add_argument('--log-level', type=str, default='INFO')
    ap.add_argument('--rootmodule', action='store_true', help=argparse.SUPPRESS)
    return ap.parse_args(argv)

def build_tracker(cfg) -> ConnectionTracker:
    channel = ResolverChannel(elevate_cmd=cfg.elevate_cmd, timeout=cfg.helper_timeout,
                              start_timeout=cfg.helper_start_timeout)
    mode = EngineMode(paused=False, capturing=cfg.capture, resolve_owners=cfg.resolve_owners)
    return ConnectionTracker(build_reader(cfg), channel=channel, mode=mode,
                             failure_threshold=cfg.failure_threshold,
                             resolver_cooldown=cfg.resolver_cooldown)

def main(argv=None) -> int:
    args = parse_args(argv)

    if args.rootmodule:
        from .resolver.helper import run
        return run(args.proc_root or "/proc")

    logging.basicConfig(level=getattr(logging, str(args.log_level).upper(), logging.INFO),
                        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s')
    try:
        cfg = init_cfg_from_args(args)
    except ConfigError as e:
        logger.error("bad configuration: %s", e)
        return 2

    tracker = build_tracker(cfg)
    app = create_app(cfg, tracker)
    tracker.start(cfg.interval)

    print(f"[*] Serving on http://{cfg.host}:{cfg.port}")
    try:
        app.run(host=cfg.host, port=cfg.port, debug=False, use_reloader=False)
    except KeyboardInterrupt:
        pass
    finally:
        tracker.shutdown(timeout=cfg.helper_timeout + cfg.interval + 1.0)
    return 0

if __name__ == '__main__':
    sys.exit(main())
