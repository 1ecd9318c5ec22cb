"""OpenAI GPT client for item category classification."""

import json
import logging

from openai import OpenAI, OpenAIError

from ..exceptions import CategorizationError, OpenAIAPIError
from ..models import CategorizationResult, Category, ItemCategorization, OrderItem

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a household budget assistant. Given a list of items from a retail order and a list of available Monarch Money categories, assign each item to the most appropriate category.

Your response must be a JSON object with:
- categorizations: an array with one entry per item, in the same order as the items, each with:
  - item_name: the item name exactly as given
  - category_id: the exact category ID from the provided list
  - category_name: the name of that category
  - confidence: a number between 0.0 and 1.0 indicating your confidence

Be conservative with confidence scores. Only use 0.9+ for very clear matches."""


class CategoryClassifier:
    """GPT-based category classifier for order items."""

    def __init__(self, api_key: str, model: str = "gpt-4o"):
        """Initialize the classifier."""
        self.client = OpenAI(api_key=api_key)
        self.model = model

    def classify_items(
        self, items: list[OrderItem], available_categories: list[Category]
    ) -> CategorizationResult:
        """
        Classify a batch of order items in a single GPT call.

        Args:
            items: Items to classify
            available_categories: Categories the items may be assigned to

        Returns:
            One categorization per item, in item order

        Raises:
            OpenAIAPIError: If the OpenAI request fails
            CategorizationError: If the response is malformed, has the wrong
                number of entries, or names an unknown category
        """
        if not items:
            return CategorizationResult()

        categories_text = "\n".join(
            f"- {cat.id}: {cat.group_name} > {cat.name}"
            if cat.group_name
            else f"- {cat.id}: {cat.name}"
            for cat in available_categories
        )
        items_text = "\n".join(
            f"{i}. {item.name} (${abs(item.price):.2f})"
            for i, item in enumerate(items, start=1)
        )

        user_prompt = f"""Please categorize the following {len(items)} items:

{items_text}

Available categories:
{categories_text}

Return exactly {len(items)} categorizations."""

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=0,
                response_format={"type": "json_object"},
            )
        except OpenAIError as e:
            logger.error(f"OpenAI request failed: {e}")
            raise OpenAIAPIError(f"Categorization request failed: {e}") from e

        try:
            result_json = json.loads(response.choices[0].message.content or "{}")
            raw = result_json["categorizations"]
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            raise CategorizationError(f"Malformed categorization response: {e}") from e

        if not isinstance(raw, list):
            raise CategorizationError("Malformed categorization response: not a list")

        if len(raw) != len(items):
            raise CategorizationError(
                f"Expected {len(items)} categorizations, got {len(raw)}"
            )

        by_id = {cat.id: cat for cat in available_categories}
        categorizations = []
        for item, entry in zip(items, raw):
            if not isinstance(entry, dict):
                raise CategorizationError(
                    f"Malformed categorization for item '{item.name}': {entry!r}"
                )

            category_id = entry.get("category_id")
            category = by_id.get(category_id) if isinstance(category_id, str) else None
            if category is None:
                raise CategorizationError(
                    f"Unknown category {category_id!r} for item '{item.name}'"
                )

            try:
                confidence = float(entry.get("confidence", 0.0))
            except (TypeError, ValueError) as e:
                raise CategorizationError(
                    f"Invalid confidence for item '{item.name}': {e}"
                ) from e
            confidence = min(max(confidence, 0.0), 1.0)
            categorizations.append(
                ItemCategorization(
                    item_name=item.name,
                    category_id=category.id,
                    category_name=category.name,
                    confidence=confidence,
                )
            )

        logger.info(f"GPT categorized {len(items)} items")
        return CategorizationResult(categorizations=categorizations)
