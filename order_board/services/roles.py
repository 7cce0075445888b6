"""Skill-role classification for the role selection step."""
from __future__ import annotations

from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence

from ..config import ROLE_CATEGORY_ORDER
from ..errors import ValidationError
from ..models import RoleRef
from .dates import MAX_SELECT_OPTIONS

OTHER_CATEGORY = "other"

CATEGORY_LABELS: Dict[str, str] = {
    "dev_language": "Development Languages",
    "front_end": "Front-End",
    "back_end": "Back-End",
    "database": "Databases",
    "ui": "UI / Design",
    "other": "Other",
}


class RoleClassifier:
    """Maps a role name onto one or more skill categories."""

    def classify(self, name: str) -> str:
        raise NotImplementedError

    def categories(self, name: str) -> FrozenSet[str]:
        return frozenset({self.classify(name)})


class KeywordRoleClassifier(RoleClassifier):
    """Substring match of role names against per-category keyword lists.

    A name may match several categories; anything matching none falls into
    ``other``.
    """

    def __init__(self, keywords: Mapping[str, Sequence[str]]) -> None:
        self._keywords = {
            category: tuple(keyword.lower() for keyword in keywords.get(category, ()))
            for category in ROLE_CATEGORY_ORDER
            if category != OTHER_CATEGORY
        }

    def categories(self, name: str) -> FrozenSet[str]:
        lowered = name.lower()
        matched = frozenset(
            category
            for category, keywords in self._keywords.items()
            if any(keyword in lowered for keyword in keywords)
        )
        return matched or frozenset({OTHER_CATEGORY})

    def classify(self, name: str) -> str:
        matched = self.categories(name)
        for category in ROLE_CATEGORY_ORDER:
            if category in matched:
                return category
        return OTHER_CATEGORY


def selectable_roles(
    directory: Iterable[RoleRef],
    *,
    excluded_ids: Iterable[int | str] = (),
) -> List[RoleRef]:
    """Drop integration-managed roles, @everyone and explicitly excluded ids."""

    excluded = {str(role_id) for role_id in excluded_ids}
    return [
        role
        for role in directory
        if not role.managed and role.name != "@everyone" and role.role_id not in excluded
    ]


def roles_in_category(
    category: str,
    directory: Iterable[RoleRef],
    classifier: RoleClassifier,
    *,
    excluded_ids: Iterable[int | str] = (),
) -> List[RoleRef]:
    if category not in ROLE_CATEGORY_ORDER:
        raise ValidationError(f"Unknown role category: {category}")
    matches = [
        role
        for role in selectable_roles(directory, excluded_ids=excluded_ids)
        if category in classifier.categories(role.name)
    ]
    matches.sort(key=lambda role: role.position, reverse=True)
    return matches[:MAX_SELECT_OPTIONS]


def find_role(name: str, directory: Iterable[RoleRef]) -> Optional[RoleRef]:
    """Case-insensitive lookup of a role by name; a leading ``@`` is ignored."""

    wanted = name.strip().lstrip("@").strip().lower()
    if not wanted:
        return None
    for role in directory:
        if role.name.lower() == wanted:
            return role
    return None


__all__ = [
    "OTHER_CATEGORY",
    "CATEGORY_LABELS",
    "RoleClassifier",
    "KeywordRoleClassifier",
    "selectable_roles",
    "roles_in_category",
    "find_role",
]
