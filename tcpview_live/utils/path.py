import os
from pathlib import Path
from typing import Optional

PACKAGE_DIR = Path(__file__).parent.parent.resolve()
CONFIG_NAMES = ("config.yaml", "config.yml", "config.json")

def to_abs_path(p: Optional[str | os.PathLike]) -> Optional[Path]:
    """Convert p to an absolute path.
    Sequence:
      1) Absolute: expanduser+resolve
      2) Relative to CWD
      3) Relative to the package folder
    """
    if not p:
        return None
    pp = Path(p).expanduser()
    if pp.is_absolute():
        return pp.resolve()
    p1 = (Path.cwd() / pp)
    if p1.exists():
        return p1.resolve()
    return (PACKAGE_DIR / pp).resolve()

def user_config_dir() -> Path:
    base = os.environ.get("XDG_CONFIG_HOME") or "~/.config"
    return Path(base).expanduser() / "tcpview-live"

def default_config_path() -> Optional[Path]:
    """First existing config file in the user config dir, if any."""
    d = user_config_dir()
    for name in CONFIG_NAMES:
        if (d / name).is_file():
            return d / name
    return None
