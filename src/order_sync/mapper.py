"""Item-name cache of category assignments.

Retailer item names repeat across orders, so each one only needs to be
classified once. Names are normalized before lookup, and a cached category
that has since been removed from Monarch is treated as unknown.
"""

import logging
from datetime import datetime

from .db import Database
from .models import Category, CategoryMapping, ItemCategorization, OrderItem

logger = logging.getLogger(__name__)


def normalize_item_name(name: str) -> str:
    """Lowercase an item name and collapse its whitespace."""
    return " ".join(name.lower().split())


class CategoryMapper:
    """Reads and writes cached item categories."""

    def __init__(self, database: Database):
        self.db = database

    def get_cached_mapping(self, item_name: str) -> CategoryMapping | None:
        """Return the cached mapping for an item name, if any."""
        return self.db.get_category_mapping(normalize_item_name(item_name))

    def lookup_items(
        self, items: list[OrderItem], categories: list[Category]
    ) -> tuple[dict[int, ItemCategorization], list[int]]:
        """
        Split an order's items into cache hits and misses.

        A mapping whose category isn't in ``categories`` counts as a miss, so
        items filed under a deleted category get classified again. Hits take
        the category's current name from ``categories``.

        Args:
            items: Order items
            categories: Categories currently available in Monarch

        Returns:
            Tuple of (hits keyed by item index, indexes of the misses)
        """
        known = {cat.id: cat for cat in categories}
        hits: dict[int, ItemCategorization] = {}
        misses: list[int] = []

        for i, item in enumerate(items):
            mapping = self.get_cached_mapping(item.name)
            category = known.get(mapping.category_id) if mapping else None
            if category is None:
                if mapping:
                    logger.info(
                        f"Cached category {mapping.category_name} for "
                        f"'{item.name}' no longer exists"
                    )
                misses.append(i)
                continue

            hits[i] = ItemCategorization(
                item_name=item.name,
                category_id=category.id,
                category_name=category.name,
                confidence=1.0,
            )

        logger.debug(f"Item cache: {len(hits)} hits, {len(misses)} misses")
        return hits, misses

    def save_mapping(
        self,
        item_name: str,
        category_id: str,
        category_name: str,
        source: str,
        confidence: float | None = None,
    ) -> CategoryMapping:
        """
        Cache the category for one item name.

        Args:
            item_name: Item name as the retailer shows it
            category_id: The Monarch category ID
            category_name: The Monarch category name
            source: Where the answer came from ('gpt', 'manual', 'rule')
            confidence: Classifier confidence, if any

        Returns:
            The saved mapping
        """
        mapping = CategoryMapping(
            pattern=normalize_item_name(item_name),
            category_id=category_id,
            category_name=category_name,
            source=source,
            confidence=confidence,
            created_at=datetime.now(),
        )
        mapping.id = self.db.save_category_mapping(mapping)
        return mapping

    def save_categorizations(
        self,
        items: list[OrderItem],
        categorizations: list[ItemCategorization],
        source: str = "gpt",
    ) -> None:
        """Cache one categorization per item, paired by position."""
        for item, categorization in zip(items, categorizations):
            self.save_mapping(
                item_name=item.name,
                category_id=categorization.category_id,
                category_name=categorization.category_name,
                source=source,
                confidence=categorization.confidence,
            )

        logger.debug(f"Cached {len(categorizations)} {source} item categories")
