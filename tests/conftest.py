"""Shared fixtures for the test suite."""

from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Callable

import pytest

from statement_ingest.models.account import Account, AccountType
from statement_ingest.models.category import Category, CategoryType
from statement_ingest.models.transaction import ClassificationSource, Transaction
from statement_ingest.storage.sqlite_store import SQLiteStore


@pytest.fixture
def store(tmp_path: Path) -> SQLiteStore:
    """Empty store in a temporary directory."""
    return SQLiteStore(tmp_path / "ingest.db")


@pytest.fixture
def account() -> Account:
    return Account(
        id="checking",
        name="Everyday Checking",
        account_type=AccountType.CHECKING,
        owner="alice",
        default_currency="USD",
    )


@pytest.fixture
def categories(store: SQLiteStore) -> dict[str, Category]:
    """A small category set for alice, already in the store."""
    cats = {
        "groceries": Category(id="groceries", name="Groceries", group="Food", owner="alice"),
        "eating-out": Category(id="eating-out", name="Eating Out", group="Food", owner="alice"),
        "transport": Category(id="transport", name="Transport", group="Travel", owner="alice"),
        "salary": Category(
            id="salary", name="Salary", group="Income", owner="alice",
            category_type=CategoryType.INCOME,
        ),
    }
    for category in cats.values():
        store.upsert_category(category)
    return cats


@pytest.fixture
def make_transaction() -> Callable[..., Transaction]:
    """Factory for transactions with sensible defaults."""

    def _make(
        description: str = "UBER EATS 123",
        amount: str = "-24.50",
        txn_date: date = date(2025, 1, 5),
        account_id: str = "checking",
        owner: str = "alice",
        currency: str = "USD",
        merchant: str = "",
        category_id: str | None = None,
        source: ClassificationSource = ClassificationSource.UNCLASSIFIED,
        confidence: float = 0.0,
    ) -> Transaction:
        return Transaction(
            account_id=account_id,
            owner=owner,
            date=txn_date,
            amount=Decimal(amount),
            currency=currency,
            description=description,
            merchant=merchant or description,
            category_id=category_id,
            classification_source=source,
            confidence=confidence,
        )

    return _make
