"""Primary-language selection from a repository's language breakdown."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Sequence

from linkrefresh.models.refresh import Catalog

SECOND_LANGUAGE_RATIO = 0.5
MAX_SELECTED_LANGUAGES = 2


@dataclass(frozen=True, slots=True)
class LanguageShare:
    language: str
    share: float


def rank_languages(breakdown: Mapping[str, float]) -> list[LanguageShare]:
    """Normalize byte counts (or percentages) into descending shares.

    Ties are broken by language name so the ranking is deterministic.
    """
    usable = {
        str(language).strip(): float(value)
        for language, value in breakdown.items()
        if str(language).strip() and isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0
    }
    total = sum(usable.values())
    if total <= 0:
        return []

    ranked = [LanguageShare(language=language, share=value / total) for language, value in usable.items()]
    ranked.sort(key=lambda item: (-item.share, item.language.lower()))
    return ranked


def select_languages(breakdown: Mapping[str, float]) -> list[str]:
    """Pick the top language, plus the runner-up when it has at least half the top share.

    A third language is never selected.
    """
    ranked = rank_languages(breakdown)
    if not ranked:
        return []

    selected = [ranked[0].language]
    if len(ranked) >= MAX_SELECTED_LANGUAGES:
        first, second = ranked[0], ranked[1]
        if second.share >= SECOND_LANGUAGE_RATIO * first.share:
            selected.append(second.language)
    return selected


def match_languages(names: Sequence[str], catalog: Catalog) -> tuple[list[str], list[str]]:
    """Split detected names into catalog spellings and names the catalog lacks.

    Catalog entries are listed global-first, so an owner's own entry wins.
    """
    known = {entry.name.strip().casefold(): entry.name for entry in catalog.languages}
    matched: list[str] = []
    unmatched: list[str] = []
    for name in names:
        entry_name = known.get(name.strip().casefold())
        if entry_name is None:
            unmatched.append(name)
        elif entry_name not in matched:
            matched.append(entry_name)
    return matched, unmatched
