"""Monarch Money GraphQL API client."""

import logging
from datetime import date
from decimal import Decimal
from typing import Any

import httpx

from ..exceptions import MonarchAPIError
from ..models import Category, Split, Transaction

logger = logging.getLogger(__name__)

TRANSACTION_FIELDS = """
    id
    amount
    date
    notes
    isSplitTransaction
    hasSplitTransactions
    category { id name }
    merchant { id name }
    splitTransactions {
        id
        amount
        notes
        category { id name }
    }
"""

GET_TRANSACTIONS_QUERY = f"""
query GetTransactionsList(
    $offset: Int, $limit: Int, $filters: TransactionFilterInput
) {{
    allTransactions(filters: $filters) {{
        totalCount
        results(offset: $offset, limit: $limit) {{
            {TRANSACTION_FIELDS}
        }}
    }}
}}
"""

GET_CATEGORIES_QUERY = """
query GetCategories {
    categories {
        id
        name
        group { id name }
    }
}
"""

UPDATE_TRANSACTION_MUTATION = f"""
mutation Common_UpdateTransaction($input: UpdateTransactionMutationInput!) {{
    updateTransaction(input: $input) {{
        transaction {{
            {TRANSACTION_FIELDS}
        }}
        errors {{ message }}
    }}
}}
"""

UPDATE_SPLITS_MUTATION = """
mutation Common_SplitTransactionMutation(
    $input: UpdateTransactionSplitMutationInput!
) {
    updateTransactionSplit(input: $input) {
        transaction { id hasSplitTransactions }
        errors { message }
    }
}
"""

DELETE_TRANSACTION_MUTATION = """
mutation Common_DeleteTransactionMutation($input: DeleteTransactionMutationInput!) {
    deleteTransaction(input: $input) {
        deleted
        errors { message }
    }
}
"""


def parse_transaction(data: dict[str, Any]) -> Transaction:
    """
    Convert a GraphQL transaction payload into a Transaction.

    Args:
        data: One entry of ``allTransactions.results`` or a mutation payload

    Returns:
        Parsed transaction
    """
    category = data.get("category") or {}
    merchant = data.get("merchant") or {}

    splits = []
    for split_data in data.get("splitTransactions") or []:
        split_category = split_data.get("category") or {}
        splits.append(
            Split(
                category_id=split_category.get("id", ""),
                category_name=split_category.get("name", ""),
                amount=Decimal(str(split_data["amount"])),
                notes=split_data.get("notes") or "",
            )
        )

    return Transaction(
        id=data["id"],
        amount=Decimal(str(data["amount"])),
        posted_date=date.fromisoformat(data["date"]),
        merchant_name=merchant.get("name", ""),
        category_id=category.get("id"),
        notes=data.get("notes"),
        has_splits=bool(data.get("hasSplitTransactions")),
        is_split_transaction=bool(data.get("isSplitTransaction")),
        splits=splits,
    )


class MonarchClient:
    """Client for the Monarch Money GraphQL API."""

    BASE_URL = "https://api.monarchmoney.com"

    def __init__(self, token: str, timeout: float = 30.0):
        """Initialize the Monarch client."""
        self.token = token
        self.client = httpx.Client(
            base_url=self.BASE_URL,
            headers={
                "Authorization": f"Token {token}",
                "Content-Type": "application/json",
                "Client-Platform": "web",
            },
            timeout=timeout,
        )

    def close(self):
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()

    def _execute(
        self, operation: str, query: str, variables: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """
        Run a GraphQL operation and return its ``data`` payload.

        Raises:
            MonarchAPIError: On HTTP failure or a GraphQL error response
        """
        payload = {
            "operationName": operation,
            "query": query,
            "variables": variables or {},
        }

        try:
            response = self.client.post("/graphql", json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(f"Monarch API error ({operation}): {e}")
            logger.error(f"Response body: {e.response.text}")
            raise MonarchAPIError(f"{operation} failed: {e}") from e
        except httpx.HTTPError as e:
            logger.error(f"HTTP error calling Monarch ({operation}): {e}")
            raise MonarchAPIError(f"{operation} failed: {e}") from e

        body = response.json()
        if body.get("errors"):
            messages = "; ".join(err.get("message", "") for err in body["errors"])
            raise MonarchAPIError(f"{operation} failed: {messages}")

        data: dict[str, Any] = body.get("data") or {}
        return data

    @staticmethod
    def _raise_payload_errors(operation: str, payload: dict[str, Any]) -> None:
        """Raise if a mutation payload reports errors."""
        errors = payload.get("errors") or []
        if errors:
            messages = "; ".join(err.get("message", "") for err in errors)
            raise MonarchAPIError(f"{operation} failed: {messages}")

    def get_transactions(
        self, start_date: date, end_date: date, limit: int = 500
    ) -> list[Transaction]:
        """
        Get transactions posted between two dates (inclusive).

        Args:
            start_date: First posting date
            end_date: Last posting date
            limit: Maximum number of transactions to return

        Returns:
            List of transactions, newest first
        """
        data = self._execute(
            "GetTransactionsList",
            GET_TRANSACTIONS_QUERY,
            {
                "offset": 0,
                "limit": limit,
                "filters": {
                    "startDate": start_date.isoformat(),
                    "endDate": end_date.isoformat(),
                },
            },
        )
        results = data.get("allTransactions", {}).get("results", [])
        transactions = [parse_transaction(item) for item in results]

        logger.debug(
            f"Fetched {len(transactions)} transactions "
            f"between {start_date} and {end_date}"
        )
        return transactions

    def get_categories(self) -> list[Category]:
        """
        Get all transaction categories.

        Returns:
            List of Monarch categories
        """
        data = self._execute("GetCategories", GET_CATEGORIES_QUERY)

        categories = []
        for cat_data in data.get("categories", []):
            group = cat_data.get("group") or {}
            categories.append(
                Category(
                    id=cat_data["id"],
                    name=cat_data["name"],
                    group_name=group.get("name"),
                )
            )
        return categories

    def update_transaction(
        self,
        transaction_id: str,
        amount: Decimal | None = None,
        category_id: str | None = None,
        notes: str | None = None,
    ) -> Transaction:
        """
        Update a transaction's amount, category, and/or notes.

        Only the fields that are passed are sent.

        Returns:
            The updated transaction
        """
        update: dict[str, Any] = {"id": transaction_id}
        if amount is not None:
            update["amount"] = float(amount)
        if category_id is not None:
            update["category"] = category_id
        if notes is not None:
            update["notes"] = notes

        logger.debug(f"Updating transaction {transaction_id}: {update}")

        data = self._execute(
            "Common_UpdateTransaction",
            UPDATE_TRANSACTION_MUTATION,
            {"input": update},
        )
        payload = data.get("updateTransaction") or {}
        self._raise_payload_errors("Common_UpdateTransaction", payload)

        return parse_transaction(payload["transaction"])

    def update_splits(self, transaction_id: str, splits: list[Split]) -> None:
        """
        Replace a transaction's category splits.

        Args:
            transaction_id: The parent transaction ID
            splits: Splits whose amounts sum to the transaction amount
        """
        split_data = [
            {
                "amount": float(split.amount),
                "categoryId": split.category_id,
                "notes": split.notes,
            }
            for split in splits
        ]

        logger.debug(
            f"Applying {len(split_data)} splits to transaction {transaction_id}"
        )

        data = self._execute(
            "Common_SplitTransactionMutation",
            UPDATE_SPLITS_MUTATION,
            {"input": {"transactionId": transaction_id, "splitData": split_data}},
        )
        payload = data.get("updateTransactionSplit") or {}
        self._raise_payload_errors("Common_SplitTransactionMutation", payload)

    def delete_transaction(self, transaction_id: str) -> None:
        """
        Delete a transaction.

        Raises:
            MonarchAPIError: If Monarch reports the transaction wasn't deleted
        """
        data = self._execute(
            "Common_DeleteTransactionMutation",
            DELETE_TRANSACTION_MUTATION,
            {"input": {"transactionId": transaction_id}},
        )
        payload = data.get("deleteTransaction") or {}
        self._raise_payload_errors("Common_DeleteTransactionMutation", payload)

        if not payload.get("deleted"):
            raise MonarchAPIError(f"Transaction {transaction_id} was not deleted")
