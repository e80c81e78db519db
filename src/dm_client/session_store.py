"""Saved CLI login: server URL, user id and session cookie."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from .config import ClientConfig

logger = logging.getLogger(__name__)

SESSION_PATH = Path.home() / ".dm_client" / "session.json"


@dataclass(frozen=True)
class SavedSession:
    base_url: str
    user_id: str
    session_cookie: str

    def __post_init__(self) -> None:
        if not isinstance(self.base_url, str) or not self.base_url.startswith(("http://", "https://")):
            raise ValueError(f"base_url must be an http(s) URL, got {self.base_url!r}")
        for name in ("user_id", "session_cookie"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                raise ValueError(f"{name} required")

    @classmethod
    def from_json(cls, payload: Any) -> "SavedSession":
        if not isinstance(payload, dict):
            raise ValueError("session file must hold an object")
        return cls(
            base_url=payload.get("base_url"),
            user_id=payload.get("user_id"),
            session_cookie=payload.get("session_cookie"),
        )

    def to_json(self) -> Dict[str, str]:
        return asdict(self)


def load_session(path: Path = SESSION_PATH) -> Optional[SavedSession]:
    """Return the saved session, or ``None`` when there is none or it is unusable."""

    path = path.expanduser()
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    try:
        return SavedSession.from_json(json.loads(raw))
    except ValueError as exc:
        logger.warning("ignoring unusable session file %s: %s", path, exc)
        return None


def save_session(session: SavedSession, path: Path = SESSION_PATH) -> Path:
    """Replace the session file in one step; the file is readable by its owner only."""

    path = path.expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        "w",
        encoding="utf-8",
        dir=path.parent,
        prefix=f".{path.name}.",
        delete=False,
    ) as handle:
        json.dump(session.to_json(), handle, indent=2, sort_keys=True)
        partial = Path(handle.name)
    try:
        os.chmod(partial, 0o600)
        os.replace(partial, path)
    except OSError:
        partial.unlink(missing_ok=True)
        raise
    return path


def clear_session(path: Path = SESSION_PATH) -> bool:
    try:
        path.expanduser().unlink()
    except FileNotFoundError:
        return False
    return True


def config_from_session(path: Path = SESSION_PATH, **overrides: Optional[str]) -> ClientConfig:
    """Client config from the environment, then the saved session, then ``overrides``.

    ``None`` overrides leave the saved value in place.
    """

    saved = load_session(path)
    values: Dict[str, Any] = saved.to_json() if saved is not None else {}
    values.update({key: value for key, value in overrides.items() if value is not None})
    return ClientConfig.from_env(**values)
