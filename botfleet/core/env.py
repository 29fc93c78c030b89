from __future__ import annotations

import os
from pathlib import Path


def load_dotenv(path: str = ".env") -> int:
    """
    Load KEY=VALUE lines from a .env file into os.environ.

    Existing variables win, `export KEY=...` lines are accepted and quotes around values are
    stripped. Returns the number of variables that were set.
    """
    p = Path(path)
    if not p.exists():
        return 0
    loaded = 0
    for raw in p.read_text().splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        if line.startswith("export "):
            line = line[len("export ") :]
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value
            loaded += 1
    return loaded


def env_str(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()
