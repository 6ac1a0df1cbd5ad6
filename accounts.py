"""
Account aggregate: every change to a learner's balances goes through here so
the hearts cap and the non-decreasing xp rule live in one place.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from dateutil.relativedelta import relativedelta
from pymongo import ReturnDocument
from pymongo.database import Database

import config
from database import create_document, to_object_id, utcnow
from errors import UserNotFound, ValidationError
from schemas import User

logger = logging.getLogger(__name__)

BILLING_CYCLES = {
    "monthly": relativedelta(months=1),
    "quarterly": relativedelta(months=3),
    "yearly": relativedelta(years=1),
    "lifetime": relativedelta(years=100),
}


def find_user(db: Database, clerk_id: str) -> Optional[Dict[str, Any]]:
    return db["user"].find_one({"clerk_id": clerk_id})


def get_user(db: Database, clerk_id: str) -> Dict[str, Any]:
    user = find_user(db, clerk_id)
    if not user:
        raise UserNotFound()
    return user


def ensure_user(db: Database, clerk_id: str) -> Dict[str, Any]:
    user = find_user(db, clerk_id)
    if user:
        return user
    create_document(db, "user", User(clerk_id=clerk_id))
    logger.info("Provisioned account for %s", clerk_id)
    return find_user(db, clerk_id)


def _positive(amount: int, label: str) -> int:
    if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
        raise ValidationError(f"{label} must be a positive number")
    return amount


def grant_xp(db: Database, user: Dict[str, Any], amount: int) -> Dict[str, Any]:
    _positive(amount, "Amount")
    return db["user"].find_one_and_update(
        {"_id": user["_id"]},
        {"$inc": {"xp": amount}, "$set": {"updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )


def grant_gems(db: Database, user: Dict[str, Any], amount: int) -> Dict[str, Any]:
    _positive(amount, "Amount")
    new_gems = user.get("gems", 0) + amount
    if new_gems > config.MAX_GEMS:
        raise ValidationError(f"Cannot exceed maximum gem limit of {config.MAX_GEMS}")
    return _set_balance(db, user, "gems", new_gems)


def spend_gems(db: Database, user: Dict[str, Any], amount: int) -> Dict[str, Any]:
    _positive(amount, "Amount")
    new_gems = user.get("gems", 0) - amount
    if new_gems < 0:
        raise ValidationError("Insufficient gems for this transaction")
    return _set_balance(db, user, "gems", new_gems)


def capped_hearts(current: int, amount: int) -> int:
    return max(0, min(current + amount, config.MAX_HEARTS))


def grant_hearts(db: Database, user: Dict[str, Any], amount: int) -> Dict[str, Any]:
    _positive(amount, "Amount")
    return _set_balance(db, user, "hearts", capped_hearts(user.get("hearts", 0), amount))


def spend_hearts(db: Database, user: Dict[str, Any], amount: int) -> Dict[str, Any]:
    _positive(amount, "Amount")
    new_hearts = user.get("hearts", 0) - amount
    if new_hearts < 0:
        raise ValidationError("Insufficient hearts for this transaction")
    return _set_balance(db, user, "hearts", new_hearts)


def _set_balance(db: Database, user: Dict[str, Any], field: str, value: int) -> Dict[str, Any]:
    return db["user"].find_one_and_update(
        {"_id": user["_id"]},
        {"$set": {field: value, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )


def apply_quest_rewards(
    db: Database,
    user_id: str,
    xp: int = 0,
    hearts: int = 0,
    gems: int = 0,
    badges=(),
) -> Dict[str, Any]:
    """Apply settled quest rewards to the account in a single update.

    The new balances are computed by the server from the stored values, so a
    concurrent spend is never overwritten. Hearts stop at the cap.
    """
    changes: Dict[str, Any] = {"updated_at": utcnow()}
    if xp > 0:
        changes["xp"] = {"$add": [{"$ifNull": ["$xp", 0]}, xp]}
    if gems > 0:
        changes["gems"] = {"$add": [{"$ifNull": ["$gems", 0]}, gems]}
    if hearts > 0:
        changes["hearts"] = {"$min": [{"$add": [{"$ifNull": ["$hearts", 0]}, hearts]}, config.MAX_HEARTS]}
    if badges:
        changes["achievements"] = {"$setUnion": [{"$ifNull": ["$achievements", []]}, {"$literal": list(badges)}]}

    user = db["user"].find_one_and_update(
        {"_id": to_object_id(user_id)}, [{"$set": changes}], return_document=ReturnDocument.AFTER
    )
    if user is None:
        raise UserNotFound()
    return user


def subscription_end_date(billing_cycle: Optional[str], start: datetime) -> datetime:
    return start + BILLING_CYCLES.get(billing_cycle, BILLING_CYCLES["monthly"])


def activate_subscription(
    db: Database, user: Dict[str, Any], plan_id: Optional[str], billing_cycle: Optional[str]
) -> Dict[str, Any]:
    now = utcnow()
    end = subscription_end_date(billing_cycle, now)
    logger.info("Activating subscription for %s until %s", user.get("clerk_id"), end.isoformat())
    return db["user"].find_one_and_update(
        {"_id": user["_id"]},
        {"$set": {
            "subscription_status": "active",
            "subscription_plan_id": plan_id,
            "subscription_start_date": now,
            "subscription_end_date": end,
            "updated_at": now,
        }},
        return_document=ReturnDocument.AFTER,
    )
