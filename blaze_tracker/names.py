"""Character name matching and AKA (also-known-as) computation.

Names are compared lowercased with leading titles stripped, so
"Dr. Elena Voss", "elena voss" and "Elena" can all refer to one character.
"""

from __future__ import annotations

import re
from difflib import SequenceMatcher

TITLES_TO_STRIP = [
    "mr", "mr.", "mrs", "mrs.", "ms", "ms.", "miss", "mister",
    "dr", "dr.", "doctor", "prof", "prof.", "professor",
    "sir", "dame", "lady", "lord", "madam", "madame",
    "captain", "capt.", "sheriff", "officer", "detective",
    "king", "queen", "prince", "princess", "father", "sister", "brother",
]

FUZZY_THRESHOLD = 0.85

_PUNCT_RE = re.compile(r"[^\w\s'-]")


def strip_titles(name: str) -> str:
    """Lowercase and remove any leading titles ("Prof. Dr. X" → "x")."""
    normalized = name.lower().strip()
    stripped = True
    while stripped:
        stripped = False
        for title in TITLES_TO_STRIP:
            if normalized.startswith(title + " "):
                normalized = normalized[len(title) + 1:].strip()
                stripped = True
                break
    return normalized


def normalize_name(name: str) -> str:
    return " ".join(_PUNCT_RE.sub("", strip_titles(name)).split())


def get_name_parts(name: str) -> list[str]:
    return strip_titles(name).split()


def names_match(a: str, b: str) -> bool:
    """Loose equality of two character names.

    Matches on normalised equality, on a single-word name equal to one part
    of a multi-word name, and on a SequenceMatcher ratio of at least
    FUZZY_THRESHOLD for names of four characters or more.
    """
    na, nb = normalize_name(a), normalize_name(b)
    if not na or not nb:
        return False
    if na == nb:
        return True

    parts_a, parts_b = na.split(), nb.split()
    if len(parts_a) == 1 and len(parts_b) > 1 and parts_a[0] in parts_b:
        return True
    if len(parts_b) == 1 and len(parts_a) > 1 and parts_b[0] in parts_a:
        return True

    if min(len(na), len(nb)) < 4:
        return False
    return SequenceMatcher(None, na, nb).ratio() >= FUZZY_THRESHOLD


def find_matching_character_key(name: str, keys: list[str]) -> str | None:
    """First key that names_match() considers the same character."""
    for key in keys:
        if key.lower() == name.lower():
            return key
    for key in keys:
        if names_match(key, name):
            return key
    return None


def is_ambiguous_name_part(part: str, all_names: list[str]) -> bool:
    """True when `part` is a word of more than one character's name."""
    lower = part.lower()
    count = 0
    for name in all_names:
        if lower in get_name_parts(name):
            count += 1
            if count > 1:
                return True
    return False


def compute_akas(
    canonical: str,
    full_name: str | None,
    nicknames: list[str],
    all_names: list[str],
) -> list[str]:
    """Alternate names for `canonical`, deduplicated case-insensitively.

    Sources: extracted nicknames, the full name, the full name without
    titles, and individual words of the full name that no other character
    shares.
    """
    canonical_lower = canonical.lower()
    akas: list[str] = []

    for nickname in nicknames:
        if nickname.strip():
            akas.append(nickname.strip())

    if full_name and full_name.strip():
        full = full_name.strip()
        akas.append(full)

        words = full.split()
        parts = get_name_parts(full)
        if strip_titles(full) != full.lower() and parts:
            akas.append(" ".join(words[len(words) - len(parts):]))

        if len(parts) > 1:
            canonical_parts = get_name_parts(canonical)
            names = all_names if full in all_names else [*all_names, full]
            for part in parts:
                if part == canonical_lower or part in canonical_parts:
                    continue
                if part in TITLES_TO_STRIP or is_ambiguous_name_part(part, names):
                    continue
                original = next((w for w in words if w.lower() == part), None)
                if original:
                    akas.append(original)

    seen: set[str] = set()
    result = []
    for aka in akas:
        lower = aka.lower()
        if lower != canonical_lower and lower not in seen:
            seen.add(lower)
            result.append(aka)
    return result
