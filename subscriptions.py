"""
Subscription payment transactions.

A transaction is created ``pending`` when checkout starts and moves exactly
once to completed, failed, cancelled or refunded. Completing it activates the
subscription on the account.
"""

import logging
import math
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import config
from accounts import activate_subscription
from database import create_document, utcnow
from errors import TransactionNotFound, ValidationError
from schemas import PaymentTransaction

logger = logging.getLogger(__name__)

FINAL_STATUSES = ("completed", "failed", "cancelled", "refunded")


def generate_transaction_id(now: datetime) -> str:
    millis = int(now.replace(tzinfo=timezone.utc).timestamp() * 1000)
    return f"txn_{millis}_{uuid.uuid4().hex[:13]}"


def create_transaction(
    db: Database,
    user: Dict[str, Any],
    *,
    plan_id: Optional[str],
    amount: float,
    description: str,
    email: str,
    name: str,
    currency: str = "USD",
    provider: str = "stripe",
    billing_cycle: Optional[str] = None,
    session_id: Optional[str] = None,
    user_agent: Optional[str] = None,
    ip_address: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Tuple[Dict[str, Any], bool]:
    """Create a pending transaction, or return the one already pending for
    this plan inside the de-duplication window. The flag is True when an
    existing transaction was returned.
    """
    now = now or utcnow()
    user_id = str(user["_id"])
    window_start = now - timedelta(minutes=config.PENDING_TRANSACTION_WINDOW_MINUTES)

    existing = db["payment_transaction"].find_one(
        {"user_id": user_id, "plan_id": plan_id, "status": "pending", "created_at": {"$gte": window_start}},
        sort=[("created_at", DESCENDING)],
    )
    if existing:
        logger.info("Found existing pending transaction %s for user %s", existing["transaction_id"], user_id)
        return existing, True

    transaction_id = session_id or generate_transaction_id(now)
    transaction = PaymentTransaction(
        transaction_id=transaction_id,
        user_id=user_id,
        amount=round(amount),
        currency=currency.upper(),
        payment_provider=provider,
        plan_id=plan_id,
        description=description or f"Subscription to plan {plan_id}",
        billing_address={"email": email, "name": name},
        provider_data={
            "session_id": session_id,
            "billing_cycle": billing_cycle,
            "created_at": now.isoformat(),
            "user_agent": user_agent,
            "ip_address": ip_address,
        },
    )
    try:
        create_document(db, "payment_transaction", {**transaction.model_dump(), "created_at": now})
    except DuplicateKeyError:
        return db["payment_transaction"].find_one({"transaction_id": transaction_id}), True

    logger.info("Created pending transaction %s for user %s", transaction_id, user_id)
    return db["payment_transaction"].find_one({"transaction_id": transaction_id}), False


def update_transaction(
    db: Database,
    user: Dict[str, Any],
    *,
    status: str = "completed",
    session_id: Optional[str] = None,
    transaction_id: Optional[str] = None,
    stripe_data: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> Tuple[Dict[str, Any], bool]:
    """Settle a pending transaction. Returns it with whether the account's
    subscription was activated."""
    if not session_id and not transaction_id:
        raise ValidationError("Either sessionId or transactionId is required")
    if status not in FINAL_STATUSES:
        raise ValidationError(f"Invalid status: {status}")
    now = now or utcnow()

    query: Dict[str, Any] = {"user_id": str(user["_id"]), "status": "pending"}
    if session_id:
        query["provider_data.session_id"] = session_id
    if transaction_id:
        query["transaction_id"] = transaction_id

    transaction = db["payment_transaction"].find_one(query)
    if not transaction:
        raise TransactionNotFound()

    changes: Dict[str, Any] = {"status": status, "processed_at": now, "updated_at": now}
    if status == "completed":
        changes["settled_at"] = now
    if stripe_data:
        changes["provider_data"] = {
            **(transaction.get("provider_data") or {}),
            **stripe_data,
            "completed_at": now.isoformat(),
        }

    updated = db["payment_transaction"].find_one_and_update(
        {"_id": transaction["_id"], "status": "pending"},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise TransactionNotFound()

    logger.info("Transaction %s moved to %s", updated["transaction_id"], status)
    if status == "completed":
        billing_cycle = (transaction.get("provider_data") or {}).get("billing_cycle")
        activate_subscription(db, user, transaction.get("plan_id"), billing_cycle)
        return updated, True
    return updated, False


def list_transactions(
    db: Database, user: Dict[str, Any], status: Optional[str] = None, limit: int = 10, page: int = 1
) -> Dict[str, Any]:
    query: Dict[str, Any] = {"user_id": str(user["_id"]), "item_type": "subscription"}
    if status:
        query["status"] = status

    transactions: List[Dict[str, Any]] = list(
        db["payment_transaction"].find(query).sort("created_at", DESCENDING).skip((page - 1) * limit).limit(limit)
    )
    total = db["payment_transaction"].count_documents(query)
    return {
        "transactions": transactions,
        "pagination": {"page": page, "limit": limit, "total": total, "pages": math.ceil(total / limit)},
    }
