"""Skill-name normalization shared by snapshots, scoring, and mappings.

Skill names arrive from several collaborators (profile editor, listing form,
admin-curated athletic mappings) with inconsistent casing and spacing. Every
comparison in the engine happens on the normalized form.
"""

import re
from typing import Iterable, List, Optional, Set


def normalize_skill(name: Optional[str]) -> str:
    """Normalize a single skill name for comparison.

    Normalization steps:
    - Convert to lowercase
    - Strip leading/trailing whitespace
    - Collapse internal whitespace to a single space

    Punctuation is kept because it is meaningful in skill names ("c++", "node.js").

    Args:
        name: Raw skill name (None is treated as empty)

    Returns:
        Normalized skill name (empty string if nothing remains)

    Example:
        >>> normalize_skill("  Decision   Making ")
        'decision making'
    """
    if not name:
        return ""
    return re.sub(r"\s+", " ", name.strip().lower())


def normalize_skill_list(names: Optional[Iterable[str]]) -> List[str]:
    """Normalize skill names, dropping blanks and duplicates but keeping order.

    Args:
        names: Iterable of raw skill names

    Returns:
        Ordered list of unique normalized skill names
    """
    seen: Set[str] = set()
    result: List[str] = []
    for name in names or []:
        normalized = normalize_skill(name) if isinstance(name, str) else ""
        if normalized and normalized not in seen:
            seen.add(normalized)
            result.append(normalized)
    return result


def normalize_skill_set(names: Optional[Iterable[str]]) -> Set[str]:
    """Normalize skill names into a set."""
    return set(normalize_skill_list(names))
