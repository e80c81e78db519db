from __future__ import annotations

from typing import Dict, Iterable, Optional, Sequence, Tuple

EmojiEntry = Tuple[str, str, Sequence[str]]

DEFAULT_EMOJIS: Tuple[EmojiEntry, ...] = (
    ("grinning", "\U0001F600", ("smile",)),
    ("smiley", "\U0001F603", ()),
    ("grin", "\U0001F601", ()),
    ("laughing", "\U0001F606", ("satisfied",)),
    ("sweat_smile", "\U0001F605", ()),
    ("joy", "\U0001F602", ("lol",)),
    ("rofl", "\U0001F923", ()),
    ("slightly_smiling_face", "\U0001F642", ()),
    ("upside_down_face", "\U0001F643", ()),
    ("wink", "\U0001F609", ()),
    ("blush", "\U0001F60A", ()),
    ("innocent", "\U0001F607", ()),
    ("heart_eyes", "\U0001F60D", ()),
    ("kissing_heart", "\U0001F618", ()),
    ("yum", "\U0001F60B", ()),
    ("stuck_out_tongue", "\U0001F61B", ()),
    ("thinking", "\U0001F914", ("thinking_face",)),
    ("neutral_face", "\U0001F610", ()),
    ("expressionless", "\U0001F611", ()),
    ("unamused", "\U0001F612", ()),
    ("roll_eyes", "\U0001F644", ()),
    ("smirk", "\U0001F60F", ()),
    ("relieved", "\U0001F60C", ()),
    ("pensive", "\U0001F614", ()),
    ("sleepy", "\U0001F62A", ()),
    ("sleeping", "\U0001F634", ()),
    ("sunglasses", "\U0001F60E", ("cool",)),
    ("confused", "\U0001F615", ()),
    ("worried", "\U0001F61F", ()),
    ("open_mouth", "\U0001F62E", ()),
    ("astonished", "\U0001F632", ()),
    ("flushed", "\U0001F633", ()),
    ("pleading_face", "\U0001F97A", ()),
    ("cry", "\U0001F622", ()),
    ("sob", "\U0001F62D", ()),
    ("scream", "\U0001F631", ()),
    ("angry", "\U0001F620", ()),
    ("rage", "\U0001F621", ()),
    ("skull", "\U0001F480", ()),
    ("poop", "\U0001F4A9", ("hankey", "shit")),
    ("clown_face", "\U0001F921", ()),
    ("ghost", "\U0001F47B", ()),
    ("alien", "\U0001F47D", ()),
    ("robot", "\U0001F916", ()),
    ("wave", "\U0001F44B", ()),
    ("ok_hand", "\U0001F44C", ()),
    ("v", "\u270c\ufe0f", ()),
    ("+1", "\U0001F44D", ("thumbsup",)),
    ("-1", "\U0001F44E", ("thumbsdown",)),
    ("clap", "\U0001F44F", ()),
    ("raised_hands", "\U0001F64C", ()),
    ("pray", "\U0001F64F", ()),
    ("muscle", "\U0001F4AA", ()),
    ("eyes", "\U0001F440", ()),
    ("heart", "\u2764\ufe0f", ("red_heart",)),
    ("broken_heart", "\U0001F494", ()),
    ("sparkling_heart", "\U0001F496", ()),
    ("fire", "\U0001F525", ("flame",)),
    ("sparkles", "\u2728", ()),
    ("star", "\u2b50", ()),
    ("tada", "\U0001F389", ("party",)),
    ("100", "\U0001F4AF", ()),
    ("rocket", "\U0001F680", ()),
    ("coffee", "\u2615", ()),
    ("pizza", "\U0001F355", ()),
    ("beer", "\U0001F37A", ()),
    ("check", "\u2705", ("white_check_mark",)),
    ("x", "\u274c", ()),
    ("warning", "\u26a0\ufe0f", ()),
)


class ShortcodeMap:
    """Case-insensitive ``:name:`` lookup table.

    Built once per renderer from an explicit entry list. ``reset`` restores the
    construction entries after ad-hoc ``register``/``clear`` calls.
    """

    def __init__(self, entries: Iterable[EmojiEntry] = DEFAULT_EMOJIS) -> None:
        self._initial: Tuple[EmojiEntry, ...] = tuple(
            (name, char, tuple(aliases)) for name, char, aliases in entries
        )
        self._codes: Dict[str, str] = {}
        self.reset()

    @classmethod
    def from_mapping(cls, mapping: Dict[str, str]) -> "ShortcodeMap":
        return cls((name, char, ()) for name, char in mapping.items())

    def register(self, name: str, char: str, aliases: Sequence[str] = ()) -> None:
        self._codes[name.lower()] = char
        for alias in aliases:
            self._codes[alias.lower()] = char

    def lookup(self, code: str) -> Optional[str]:
        return self._codes.get(code.lower())

    def reset(self) -> None:
        self._codes = {}
        for name, char, aliases in self._initial:
            self.register(name, char, aliases)

    def clear(self) -> None:
        self._codes = {}

    def __contains__(self, code: object) -> bool:
        return isinstance(code, str) and code.lower() in self._codes

    def __len__(self) -> int:
        return len(self._codes)
