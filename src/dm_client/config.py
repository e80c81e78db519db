from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from typing import Mapping

ENV_PREFIX = "DM_CLIENT_"
DEFAULT_EMOJI_BASE_URL = "https://cdn.jsdelivr.net/gh/twitter/twemoji@14.0.2/assets/"


@dataclass(frozen=True)
class ClientConfig:
    base_url: str = "http://127.0.0.1:3000"
    user_id: str = ""
    session_cookie: str | None = None
    cookie_name: str = "connect.sid"
    typing_idle_s: float = 3.0
    typing_expiry_s: float = 5.0
    max_message_length: int = 1000
    page_limit: int = 50
    request_timeout_s: float = 10.0
    ws_path: str = "/ws"
    reconnect_delay_s: float = 2.0
    emoji_base_url: str = DEFAULT_EMOJI_BASE_URL

    @property
    def ws_url(self) -> str:
        base = self.base_url.rstrip("/")
        if base.startswith("https://"):
            base = "wss://" + base[len("https://") :]
        elif base.startswith("http://"):
            base = "ws://" + base[len("http://") :]
        return f"{base}{self.ws_path}"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides) -> "ClientConfig":
        """Build a config from ``DM_CLIENT_*`` variables, then apply ``overrides``.

        ``DM_CLIENT_TYPING_IDLE_S=1.5`` sets ``typing_idle_s`` and so on. Values
        that do not parse as the field's type raise ``ValueError``.
        """

        env = os.environ if environ is None else environ
        values: dict[str, object] = {}
        for field in fields(cls):
            raw = env.get(ENV_PREFIX + field.name.upper())
            if raw is None:
                continue
            values[field.name] = _coerce(field.name, field.type, raw)
        config = cls(**values)
        clean = {key: value for key, value in overrides.items() if value is not None}
        return replace(config, **clean) if clean else config


def _coerce(name: str, annotation: object, raw: str) -> object:
    kind = str(annotation)
    try:
        if kind == "int":
            return int(raw)
        if kind == "float":
            return float(raw)
    except ValueError as exc:
        raise ValueError(f"{ENV_PREFIX}{name.upper()} must be a {kind}, got {raw!r}") from exc
    if kind.startswith("str | None") and raw == "":
        return None
    return raw
