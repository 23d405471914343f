"""Immutable set of app ids and slugs that must never be imported."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable


@dataclass(frozen=True)
class Denylist:
    app_ids: frozenset[int] = frozenset()
    slugs: frozenset[str] = frozenset()

    @classmethod
    def from_values(
        cls, app_ids: Iterable[int] = (), slugs: Iterable[str] = ()
    ) -> "Denylist":
        return cls(
            frozenset(int(app_id) for app_id in app_ids),
            frozenset(str(slug).strip().lower() for slug in slugs if str(slug).strip()),
        )

    def has_app_id(self, app_id: int) -> bool:
        return int(app_id) in self.app_ids

    def has_slug(self, slug: str | None) -> bool:
        if not slug:
            return False
        return slug.strip().lower() in self.slugs

    def __len__(self) -> int:
        return len(self.app_ids) + len(self.slugs)


EMPTY_DENYLIST = Denylist()


__all__ = ["Denylist", "EMPTY_DENYLIST"]
