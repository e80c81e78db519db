from __future__ import annotations

from typing import Callable, FrozenSet, Iterable, List, Set

PresenceCallback = Callable[[str, bool], None]


class PresenceTracker:
    """Online user ids for the session, exactly as the server reports them."""

    def __init__(self) -> None:
        self._online: Set[str] = set()
        self._callbacks: List[PresenceCallback] = []

    def register_callback(self, callback: PresenceCallback) -> None:
        self._callbacks.append(callback)

    def unregister_callback(self, callback: PresenceCallback) -> None:
        try:
            self._callbacks.remove(callback)
        except ValueError:
            return

    def _notify(self, user_id: str, online: bool) -> None:
        for callback in list(self._callbacks):
            callback(user_id, online)

    def apply_snapshot(self, user_ids: Iterable[str]) -> None:
        previous = self._online
        self._online = {user_id for user_id in user_ids if isinstance(user_id, str)}
        for user_id in sorted(previous - self._online):
            self._notify(user_id, False)
        for user_id in sorted(self._online - previous):
            self._notify(user_id, True)

    def apply_delta(self, user_id: str, status: str) -> None:
        if status == "online":
            if user_id in self._online:
                return
            self._online.add(user_id)
            self._notify(user_id, True)
        elif user_id in self._online:
            self._online.discard(user_id)
            self._notify(user_id, False)

    def is_online(self, user_id: str) -> bool:
        return user_id in self._online

    @property
    def online_user_ids(self) -> FrozenSet[str]:
        return frozenset(self._online)

    def clear(self) -> None:
        self._online.clear()

    def __len__(self) -> int:
        return len(self._online)
