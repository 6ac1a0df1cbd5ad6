from datetime import timedelta

import pytest
from dateutil.relativedelta import relativedelta

from errors import TransactionNotFound, ValidationError
from subscriptions import create_transaction, list_transactions, update_transaction
from tests.conftest import NOW

PLAN_ID = "65f1a2b3c4d5e6f7a8b9c0d1"


def _create(db, user, **overrides):
    fields = {
        "plan_id": PLAN_ID,
        "amount": 999.4,
        "currency": "usd",
        "description": "Premium monthly plan",
        "email": "learner@example.com",
        "name": "Learner",
        "billing_cycle": "monthly",
    }
    fields.update(overrides)
    return create_transaction(db, user, **fields)


def test_create_pending_transaction(db, make_user):
    user = make_user()

    transaction, is_existing = _create(db, user, now=NOW)

    assert is_existing is False
    assert transaction["status"] == "pending"
    assert transaction["amount"] == 999
    assert transaction["currency"] == "USD"
    assert transaction["user_id"] == str(user["_id"])
    assert transaction["created_at"] == NOW
    assert transaction["transaction_id"].startswith("txn_")
    assert transaction["provider_data"]["billing_cycle"] == "monthly"
    assert transaction["billing_address"] == {"email": "learner@example.com", "name": "Learner"}


def test_session_id_becomes_transaction_id(db, make_user):
    user = make_user()

    transaction, _ = _create(db, user, session_id="cs_test_123")

    assert transaction["transaction_id"] == "cs_test_123"
    assert transaction["provider_data"]["session_id"] == "cs_test_123"


def test_create_is_idempotent_within_window(db, make_user):
    user = make_user()

    first, _ = _create(db, user, now=NOW)
    second, is_existing = _create(db, user, now=NOW + timedelta(minutes=29))

    assert is_existing is True
    assert second["transaction_id"] == first["transaction_id"]
    assert db["payment_transaction"].count_documents({}) == 1


def test_create_after_window_starts_a_new_transaction(db, make_user):
    user = make_user()

    first, _ = _create(db, user, now=NOW)
    second, is_existing = _create(db, user, now=NOW + timedelta(minutes=31))

    assert is_existing is False
    assert second["transaction_id"] != first["transaction_id"]
    assert db["payment_transaction"].count_documents({}) == 2


def test_other_plan_is_not_deduplicated(db, make_user):
    user = make_user()

    _create(db, user, now=NOW)
    _, is_existing = _create(db, user, plan_id="65f1a2b3c4d5e6f7a8b9c0d2", now=NOW)

    assert is_existing is False


def test_complete_transaction_activates_subscription(db, make_user):
    user = make_user()
    transaction, _ = _create(db, user, billing_cycle="quarterly")

    updated, subscription_updated = update_transaction(
        db, user, transaction_id=transaction["transaction_id"], stripe_data={"payment_intent": "pi_1"}, now=NOW
    )

    assert subscription_updated is True
    assert updated["status"] == "completed"
    assert updated["processed_at"] == NOW
    assert updated["settled_at"] == NOW
    assert updated["provider_data"]["payment_intent"] == "pi_1"
    assert updated["provider_data"]["billing_cycle"] == "quarterly"
    account = db["user"].find_one({"_id": user["_id"]})
    assert account["subscription_status"] == "active"
    assert account["subscription_plan_id"] == PLAN_ID
    assert account["subscription_end_date"] == account["subscription_start_date"] + relativedelta(months=3)


def test_transition_happens_once(db, make_user):
    user = make_user()
    transaction, _ = _create(db, user, session_id="cs_once")
    update_transaction(db, user, session_id="cs_once")

    with pytest.raises(TransactionNotFound):
        update_transaction(db, user, session_id="cs_once", status="refunded")

    assert db["payment_transaction"].find_one({"_id": transaction["_id"]})["status"] == "completed"


def test_failed_transaction_leaves_account_alone(db, make_user):
    user = make_user()
    transaction, _ = _create(db, user)

    updated, subscription_updated = update_transaction(
        db, user, transaction_id=transaction["transaction_id"], status="failed"
    )

    assert subscription_updated is False
    assert updated["status"] == "failed"
    assert updated.get("settled_at") is None
    assert db["user"].find_one({"_id": user["_id"]})["subscription_status"] is None


def test_update_needs_an_identifier(db, make_user):
    user = make_user()

    with pytest.raises(ValidationError):
        update_transaction(db, user)


def test_update_rejects_pending_as_target(db, make_user):
    user = make_user()
    transaction, _ = _create(db, user)

    with pytest.raises(ValidationError):
        update_transaction(db, user, transaction_id=transaction["transaction_id"], status="pending")


def test_list_transactions_paginates(db, make_user):
    user = make_user()
    for minutes in range(0, 5 * 40, 40):
        _create(db, user, now=NOW + timedelta(minutes=minutes))
    first, _ = _create(db, user, plan_id=None, now=NOW + timedelta(hours=10))
    update_transaction(db, user, transaction_id=first["transaction_id"], status="cancelled")

    page = list_transactions(db, user, limit=2, page=1)
    assert page["pagination"] == {"page": 1, "limit": 2, "total": 6, "pages": 3}
    assert page["transactions"][0]["transaction_id"] == first["transaction_id"]

    last = list_transactions(db, user, limit=4, page=2)
    assert len(last["transactions"]) == 2

    cancelled = list_transactions(db, user, status="cancelled")
    assert [t["transaction_id"] for t in cancelled["transactions"]] == [first["transaction_id"]]
