from __future__ import annotations

import os
import shutil
from collections.abc import Mapping
from pathlib import Path


def seeded_path(env: Mapping[str, str] | None = None) -> str:
    """Return PATH extended with common install locations.

    Menu-bar launches and sandboxed shells often inherit a minimal PATH, so
    CLIs installed through Homebrew, bun, nvm, fnm or npm would not resolve.
    """
    source = os.environ if env is None else env
    home = str(Path.home())
    defaults = ":".join(
        [
            "/usr/bin",
            "/bin",
            "/usr/sbin",
            "/sbin",
            "/opt/homebrew/bin",
            "/usr/local/bin",
            f"{home}/.bun/bin",
            f"{home}/.nvm/versions/node/current/bin",
            f"{home}/.nvm/versions/node/*/bin",
            f"{home}/.npm-global/bin",
            f"{home}/.local/share/fnm",
            f"{home}/.fnm",
        ]
    )
    existing = source.get("PATH", "")
    if existing:
        return f"{existing}:{defaults}"
    return defaults


def which(tool: str, env: Mapping[str, str] | None = None) -> str | None:
    if os.sep in tool:
        return tool if _is_executable(Path(tool)) else None

    source = os.environ if env is None else env
    found = shutil.which(tool, path=source.get("PATH") or None)
    if found:
        return found

    home = Path.home()
    candidates = [
        Path("/opt/homebrew/bin") / tool,
        Path("/usr/local/bin") / tool,
        home / ".local/bin" / tool,
        home / "bin" / tool,
    ]
    for candidate in candidates:
        if _is_executable(candidate):
            return str(candidate)
    return None


def _is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)
