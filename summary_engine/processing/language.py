"""Dominant-language detection for email bodies."""

from __future__ import annotations

import re
from collections import Counter
from typing import Protocol, runtime_checkable

#: Languages the on-device model is able to summarize.
SUPPORTED_LANGUAGES: frozenset[str] = frozenset(
    {"en", "fr", "de", "it", "es", "pt-BR", "zh-Hans", "ja", "ko"}
)

UNDETERMINED = "und"


def is_supported(tag: str) -> bool:
    """Undetermined counts as supported: the engine only warns on a clear miss."""
    return tag == UNDETERMINED or tag in SUPPORTED_LANGUAGES


@runtime_checkable
class LanguageDetector(Protocol):
    """Host capability returning a best-guess language tag or ``"und"``."""

    def detect(self, text: str) -> str:
        ...


# ── Default detector ───────────────────────────────────────────────────────────

# (tag, first, last) code point ranges checked before word statistics.
_SCRIPTS: list[tuple[str, int, int]] = [
    ("ko", 0xAC00, 0xD7AF),
    ("ja", 0x3040, 0x30FF),
    ("zh-Hans", 0x4E00, 0x9FFF),
    ("ru", 0x0400, 0x04FF),
    ("el", 0x0370, 0x03FF),
    ("he", 0x0590, 0x05FF),
    ("ar", 0x0600, 0x06FF),
    ("hi", 0x0900, 0x097F),
    ("th", 0x0E00, 0x0E7F),
]

# Short, frequent function words.  Includes a few unsupported Latin-script
# languages so that e.g. Dutch is reported as "nl" rather than misread as "en".
_STOPWORDS: dict[str, frozenset[str]] = {
    "en": frozenset("the and to of is you that for it with this are on be have".split()),
    "fr": frozenset("le la les et des est une pour que vous dans pas sur nous avec".split()),
    "de": frozenset("der die das und ist nicht mit ich sie ein eine zu den für auf".split()),
    "it": frozenset("il di che è la per non una sono gli con del della questo".split()),
    "es": frozenset("el la que de los las por una para con es del está usted".split()),
    "pt-BR": frozenset("o que de não uma para com os as você está do da são".split()),
    "nl": frozenset("de het een en van ik je dat niet is met voor op zijn".split()),
    "sv": frozenset("och att det som en är på för med jag inte av till har".split()),
    "pl": frozenset("i w nie na się że z do jest to jak ale czy dla".split()),
    "tr": frozenset("ve bir bu da için ile ama çok ne gibi daha olan değil".split()),
}

_WORD = re.compile(r"[^\W\d_]+", re.UNICODE)
_MIN_WORDS = 5


class ScriptLanguageDetector:
    """Script and stop-word heuristic; cheap enough to run on every email.

    Non-Latin scripts are decided by code point share.  Latin text is scored
    by counting function words per language.  Too little evidence returns
    ``"und"``.
    """

    def detect(self, text: str) -> str:
        letters = [ch for ch in text if ch.isalpha()]
        if not letters:
            return UNDETERMINED

        script_counts: Counter[str] = Counter()
        for ch in letters:
            cp = ord(ch)
            for tag, first, last in _SCRIPTS:
                if first <= cp <= last:
                    script_counts[tag] += 1
                    break

        if script_counts:
            tag, count = script_counts.most_common(1)[0]
            if count / len(letters) >= 0.3:
                # Japanese mixes kana with Han characters.
                if tag == "zh-Hans" and script_counts.get("ja"):
                    return "ja"
                return tag

        words = [w.lower() for w in _WORD.findall(text)]
        if len(words) < _MIN_WORDS:
            return UNDETERMINED

        scores = Counter(
            {tag: sum(1 for w in words if w in vocab) for tag, vocab in _STOPWORDS.items()}
        )
        best = scores.most_common(2)
        if not best or best[0][1] == 0:
            return UNDETERMINED
        if len(best) > 1 and best[0][1] == best[1][1]:
            return UNDETERMINED
        return best[0][0]
