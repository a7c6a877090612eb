"""Canonical name selection for a group of records."""

from collections.abc import Iterable

from partnermap.db.registry_store import merge_unique


def _qualifies(name: str) -> bool:
    return "." not in name and "_" not in name


def choose_canonical(names: list[str]) -> str:
    """Pick the display name for a group.

    The first name is the baseline. It is replaced only by a strictly shorter
    name that contains neither '.' nor '_'.
    """
    if not names:
        raise ValueError("At least one name is required")

    best = names[0]
    for name in names[1:]:
        if len(name) < len(best) and _qualifies(name):
            best = name
    return best


def consolidate_aliases(
    canonical: str, names: list[str], existing_aliases: Iterable[str] = ()
) -> list[str]:
    """Every group name and existing alias except the canonical one.

    De-duplication is exact, so case variants are kept apart.
    """
    return merge_unique(
        [n for n in names if n != canonical],
        [a for a in existing_aliases if a != canonical],
    )


def resolve_canonical(
    names: list[str], existing_aliases: Iterable[str] = ()
) -> tuple[str, list[str]]:
    """Return the canonical name and the consolidated alias set."""
    canonical = choose_canonical(names)
    return canonical, consolidate_aliases(canonical, names, existing_aliases)
