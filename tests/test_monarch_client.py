"""Tests for the Monarch GraphQL client."""

import json
from datetime import date
from decimal import Decimal

import httpx
import pytest

from order_sync.clients.monarch import MonarchClient
from order_sync.exceptions import MonarchAPIError
from order_sync.models import Split

TRANSACTION = {
    "id": "t1",
    "amount": -26.39,
    "date": "2025-01-11",
    "notes": None,
    "isSplitTransaction": False,
    "hasSplitTransactions": True,
    "category": {"id": "shopping", "name": "Shopping"},
    "merchant": {"id": "m1", "name": "Walmart"},
    "splitTransactions": [
        {
            "id": "s1",
            "amount": -4.39,
            "notes": "Groceries:\n- Milk $3.99",
            "category": {"id": "groceries", "name": "Groceries"},
        }
    ],
}


def make_client(handler) -> tuple[MonarchClient, list[dict]]:
    """Create a client whose requests go to ``handler``; returns sent payloads."""
    sent: list[dict] = []

    def transport(request: httpx.Request) -> httpx.Response:
        sent.append(json.loads(request.content))
        return handler(request)

    client = MonarchClient(token="test_token")
    client.client.close()
    client.client = httpx.Client(
        base_url=MonarchClient.BASE_URL,
        headers={"Authorization": "Token test_token"},
        transport=httpx.MockTransport(transport),
    )
    return client, sent


class TestMonarchClient:
    """Test requests and response parsing."""

    def test_get_transactions(self):
        """Transactions are parsed with their splits."""
        client, sent = make_client(
            lambda request: httpx.Response(
                200,
                json={"data": {"allTransactions": {"results": [TRANSACTION]}}},
            )
        )

        with client:
            transactions = client.get_transactions(
                date(2025, 1, 1), date(2025, 1, 21), limit=100
            )

        txn = transactions[0]
        assert txn.amount == Decimal("-26.39")
        assert txn.posted_date == date(2025, 1, 11)
        assert txn.merchant_name == "Walmart"
        assert txn.carries_splits
        assert txn.splits[0].amount == Decimal("-4.39")

        variables = sent[0]["variables"]
        assert variables["limit"] == 100
        assert variables["filters"] == {
            "startDate": "2025-01-01",
            "endDate": "2025-01-21",
        }

    def test_update_splits_payload(self):
        """Splits are sent with their category and notes."""
        client, sent = make_client(
            lambda request: httpx.Response(
                200,
                json={
                    "data": {
                        "updateTransactionSplit": {
                            "transaction": {"id": "t1"},
                            "errors": [],
                        }
                    }
                },
            )
        )

        client.update_splits(
            "t1",
            [
                Split(
                    category_id="groceries",
                    category_name="Groceries",
                    amount=Decimal("-4.39"),
                    notes="Groceries:\n- Milk $3.99",
                )
            ],
        )

        payload = sent[0]["variables"]["input"]
        assert payload["transactionId"] == "t1"
        assert payload["splitData"] == [
            {
                "amount": -4.39,
                "categoryId": "groceries",
                "notes": "Groceries:\n- Milk $3.99",
            }
        ]

    def test_update_transaction_sends_only_given_fields(self):
        """Unset fields are left out of the mutation input."""
        client, sent = make_client(
            lambda request: httpx.Response(
                200,
                json={
                    "data": {
                        "updateTransaction": {"transaction": TRANSACTION, "errors": []}
                    }
                },
            )
        )

        client.update_transaction("t1", category_id="groceries")

        assert sent[0]["variables"]["input"] == {"id": "t1", "category": "groceries"}

    def test_graphql_errors(self):
        """Top-level GraphQL errors raise MonarchAPIError."""
        client, _ = make_client(
            lambda request: httpx.Response(
                200, json={"errors": [{"message": "Not authorized"}]}
            )
        )

        with pytest.raises(MonarchAPIError, match="Not authorized"):
            client.get_categories()

    def test_http_error(self):
        """HTTP failures raise MonarchAPIError."""
        client, _ = make_client(lambda request: httpx.Response(500, text="oops"))

        with pytest.raises(MonarchAPIError):
            client.get_categories()

    def test_delete_not_deleted(self):
        """A delete the API didn't perform is an error."""
        client, _ = make_client(
            lambda request: httpx.Response(
                200,
                json={"data": {"deleteTransaction": {"deleted": False, "errors": []}}},
            )
        )

        with pytest.raises(MonarchAPIError, match="was not deleted"):
            client.delete_transaction("t2")

    def test_get_categories(self):
        """Categories carry their group name."""
        client, _ = make_client(
            lambda request: httpx.Response(
                200,
                json={
                    "data": {
                        "categories": [
                            {
                                "id": "groceries",
                                "name": "Groceries",
                                "group": {"id": "g1", "name": "Food & Dining"},
                            }
                        ]
                    }
                },
            )
        )

        categories = client.get_categories()

        assert categories[0].group_name == "Food & Dining"
