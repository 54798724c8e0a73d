"""
Read interface the engine consumes from the item & profile store, plus an
in-memory implementation used for local runs and tests.
"""

import json
from collections import Counter
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Protocol, Sequence

from ranking_engine.engine.errors import StoreUnavailableError
from ranking_engine.engine.models import Interaction, Item, UserProfile

# attribute name -> accepted casefolded values
Filters = Mapping[str, frozenset[str]]


def matches_filters(item: Item, filters: Filters) -> bool:
    """AND across attribute names, OR within the accepted values of one attribute."""
    for name, accepted in filters.items():
        if not item.attribute_values(name) & accepted:
            return False
    return True


class ItemStore(Protocol):
    async def get_item(self, item_id: str) -> Optional[Item]: ...

    async def get_items(self, item_ids: Sequence[str]) -> list[Item]: ...

    async def related_items(self, item_id: str, limit: int) -> list[Item]:
        """Items sharing attributes or co-interactions with `item_id`, itself excluded."""
        ...

    async def items_by_category(self, category: str, limit: int) -> list[Item]: ...

    async def has_category(self, category: str) -> bool: ...

    async def search_items(
        self,
        tokens: Sequence[str],
        limit: int,
        filters: Optional[Filters] = None,
    ) -> list[Item]:
        """
        Items whose indexed text matches any of `tokens` (every item when
        `tokens` is empty) and that pass `filters`, most popular first.
        """
        ...

    async def count_items(
        self, tokens: Sequence[str], filters: Optional[Filters] = None
    ) -> int:
        """Number of items `search_items` would match without a limit."""
        ...

    async def popular_items(self, limit: int) -> list[Item]:
        """Popularity-ranked pool, most popular first."""
        ...

    async def get_profile(self, user_id: str) -> UserProfile:
        """Interaction history; unknown users get an empty profile."""
        ...


class InMemoryCatalog:
    def __init__(
        self,
        items: Iterable[Item] = (),
        profiles: Optional[Mapping[str, Sequence[Interaction]]] = None,
    ):
        self.items: dict[str, Item] = {item.item_id: item for item in items}
        self.profiles: dict[str, tuple[Interaction, ...]] = {
            user_id: tuple(interactions)
            for user_id, interactions in (profiles or {}).items()
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "InMemoryCatalog":
        """
        Build a catalog from the JSON catalog format:

            {"items": [{"item_id": ..., "categories": [...], ...}],
             "profiles": {"<user_id>": [{"item_id": ..., "type": ..., "timestamp": ...}]}}
        """
        items = [Item.from_dict(raw) for raw in data.get("items", [])]
        profiles = {
            str(user_id): [
                Interaction(
                    item_id=str(raw["item_id"]),
                    interaction_type=raw.get("type", "view"),
                    timestamp=float(raw.get("timestamp", 0.0)),
                )
                for raw in interactions
            ]
            for user_id, interactions in (data.get("profiles") or {}).items()
        }
        return cls(items, profiles)

    @classmethod
    def from_json(cls, path: Path) -> "InMemoryCatalog":
        try:
            with open(path) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StoreUnavailableError(f"Failed to load catalog {path}: {e}") from e
        return cls.from_dict(data)

    async def get_item(self, item_id: str) -> Optional[Item]:
        return self.items.get(item_id)

    async def get_items(self, item_ids: Sequence[str]) -> list[Item]:
        return [self.items[i] for i in item_ids if i in self.items]

    def _co_interactions(self, item_id: str) -> Counter:
        counts: Counter = Counter()
        for interactions in self.profiles.values():
            ids = {i.item_id for i in interactions}
            if item_id in ids:
                counts.update(ids - {item_id})
        return counts

    async def related_items(self, item_id: str, limit: int) -> list[Item]:
        source = self.items.get(item_id)
        if source is None:
            return []
        co_counts = self._co_interactions(item_id)
        source_categories = set(source.categories)

        ranked = []
        for other in self.items.values():
            if other.item_id == item_id:
                continue
            shared = len(source_categories & set(other.categories))
            co = co_counts.get(other.item_id, 0)
            if shared or co:
                ranked.append((-co, -shared, other.item_id, other))
        ranked.sort(key=lambda row: row[:3])
        return [row[3] for row in ranked[:limit]]

    async def items_by_category(self, category: str, limit: int) -> list[Item]:
        wanted = category.casefold()
        matches = [
            item
            for item in self.items.values()
            if wanted in {c.casefold() for c in item.categories}
        ]
        matches.sort(key=lambda item: (-item.popularity, item.item_id))
        return matches[:limit]

    async def has_category(self, category: str) -> bool:
        wanted = category.casefold()
        return any(
            wanted in {c.casefold() for c in item.categories}
            for item in self.items.values()
        )

    def _matching(
        self, tokens: Sequence[str], filters: Optional[Filters]
    ) -> list[Item]:
        wanted = set(tokens)
        return [
            item
            for item in self.items.values()
            if (not wanted or wanted & item.search_tokens)
            and matches_filters(item, filters or {})
        ]

    async def search_items(
        self,
        tokens: Sequence[str],
        limit: int,
        filters: Optional[Filters] = None,
    ) -> list[Item]:
        matches = self._matching(tokens, filters)
        matches.sort(key=lambda item: (-item.popularity, item.item_id))
        return matches[:limit]

    async def count_items(
        self, tokens: Sequence[str], filters: Optional[Filters] = None
    ) -> int:
        return len(self._matching(tokens, filters))

    async def popular_items(self, limit: int) -> list[Item]:
        ranked = sorted(
            self.items.values(), key=lambda item: (-item.popularity, item.item_id)
        )
        return ranked[:limit]

    async def get_profile(self, user_id: str) -> UserProfile:
        return UserProfile(user_id=user_id, interactions=self.profiles.get(user_id, ()))
