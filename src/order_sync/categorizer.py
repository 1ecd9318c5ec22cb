"""Item categorization with cache-first logic."""

import logging

from .clients.openai_client import CategoryClassifier
from .mapper import CategoryMapper
from .models import CategorizationResult, Category, OrderItem

logger = logging.getLogger(__name__)


class ItemCategorizer:
    """
    Categorizes order items using a cache-first approach.

    Flow:
    1. Check the cache for every item
    2. Send all cache misses to GPT in one batch
    3. Save the fresh results and return everything in item order
    """

    def __init__(self, mapper: CategoryMapper, classifier: CategoryClassifier):
        """
        Initialize the categorizer.

        Args:
            mapper: Category mapper for cache operations
            classifier: GPT classifier for new classifications
        """
        self.mapper = mapper
        self.classifier = classifier

    def categorize_items(
        self, items: list[OrderItem], categories: list[Category]
    ) -> CategorizationResult:
        """
        Categorize order items.

        Cached mappings whose category no longer exists are treated as misses.

        Args:
            items: Items to categorize
            categories: Available Monarch categories

        Returns:
            One categorization per item, in the same order as ``items``
        """
        hits, misses = self.mapper.lookup_items(items, categories)
        results = dict(hits)

        # One GPT call for everything not cached
        if misses:
            logger.info(f"Categorizing {len(misses)} items with GPT")
            pending = [items[i] for i in misses]
            fresh = self.classifier.classify_items(pending, categories)
            self.mapper.save_categorizations(pending, fresh.categorizations)
            results.update(zip(misses, fresh.categorizations))

        if hits:
            logger.info(f"Used cached categories for {len(hits)} items")

        return CategorizationResult(
            categorizations=[results[i] for i in sorted(results)]
        )
