"""
Quest workflow: assignment, progress, reward settlement and the per-user
quest listing.

A learner event (lesson completed, xp earned, streak kept...) arrives as a
condition type plus an increment. ``record_activity`` finds or assigns the
quest it counts towards, applies the increment and, when the quest has just
been completed, settles its rewards exactly once.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from functools import singledispatch
from typing import Any, Dict, List, Optional, Tuple

from pydantic import TypeAdapter
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import config
from accounts import apply_quest_rewards
from database import create_document, to_object_id, utcnow
from errors import (
    NoActiveQuestsForCondition,
    NoEligibleQuestError,
    ProgressRecordNotFound,
    QuestNotFound,
    UserNotFound,
    ValidationError,
)
from projection import project
from schemas import (
    BadgeReward,
    ClaimedReward,
    ConditionProgress,
    GemsReward,
    HeartsReward,
    Reward,
    UserQuest,
    XpReward,
)

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = ["assigned", "started", "in_progress"]
EXCLUDED_FROM_ASSIGNMENT = ["in_progress", "completed"]

_reward_adapter = TypeAdapter(List[Reward])


def _positive_increment(value) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value) or value <= 0:
        raise ValidationError("incrementValue must be a positive number")


# ---------- Assignment ----------

def assign(db: Database, user: Dict[str, Any], condition_type: str, now: Optional[datetime] = None) -> Tuple[Dict[str, Any], bool]:
    """Pick the newest active quest for ``condition_type`` the user has not
    started or finished, and make sure a progress record exists for it.

    Returns the record and whether it was created by this call.
    """
    now = now or utcnow()
    user_id = str(user["_id"])

    candidates = list(
        db["quest"].find({"status": "active", "conditions.type": condition_type}).sort("created_at", DESCENDING)
    )
    if not candidates:
        raise NoActiveQuestsForCondition()

    excluded = {
        doc["quest_id"]
        for doc in db["user_quest"].find(
            {"user_id": user_id, "status": {"$in": EXCLUDED_FROM_ASSIGNMENT}}, {"quest_id": 1}
        )
    }
    quest = next((q for q in candidates if str(q["_id"]) not in excluded), None)
    if quest is None:
        raise NoEligibleQuestError()

    quest_id = str(quest["_id"])
    existing = db["user_quest"].find_one({"user_id": user_id, "quest_id": quest_id})
    if existing:
        return existing, False

    record = UserQuest(
        user_id=user_id,
        quest_id=quest_id,
        status="assigned",
        conditions_progress=[
            ConditionProgress(
                condition_id=condition["condition_id"],
                condition_type=condition["type"],
                target_value=condition["target"],
            )
            for condition in quest["conditions"]
        ],
        assigned_at=now,
        expires_at=quest.get("end_date"),
        last_activity_at=now,
        priority=quest.get("priority", 0),
    )
    try:
        create_document(db, "user_quest", record)
    except DuplicateKeyError:
        # a concurrent request assigned it first
        return db["user_quest"].find_one({"user_id": user_id, "quest_id": quest_id}), False

    db["quest"].update_one({"_id": quest["_id"]}, {"$inc": {"users_assigned": 1}})
    logger.info("Assigned quest %s to user %s for %s", quest_id, user_id, condition_type)
    return db["user_quest"].find_one({"user_id": user_id, "quest_id": quest_id}), True


# ---------- Progress ----------

def _overall_progress(conditions: List[Dict[str, Any]]) -> int:
    if not conditions:
        return 0
    if len(conditions) == 1:
        only = conditions[0]
        return min(100, round(only["current_value"] / only["target_value"] * 100))
    done = sum(1 for c in conditions if c["is_completed"])
    return round(done / len(conditions) * 100)


def increment_progress(
    db: Database,
    user_id: str,
    quest_id: str,
    condition_type: str,
    increment_value,
    metadata: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    _positive_increment(increment_value)
    now = now or utcnow()

    record = db["user_quest"].find_one({"user_id": user_id, "quest_id": quest_id})
    if not record:
        raise ProgressRecordNotFound()
    if record["status"] == "completed":
        return record

    conditions = record.get("conditions_progress") or []
    matching = [c for c in conditions if c["condition_type"] == condition_type]
    if not matching:
        raise ValidationError(f"Quest has no {condition_type} condition")
    condition = next((c for c in matching if not c["is_completed"]), matching[0])

    condition["current_value"] = condition["current_value"] + increment_value
    if condition["current_value"] >= condition["target_value"] and not condition["is_completed"]:
        condition["is_completed"] = True
        condition["completed_at"] = now
    if metadata:
        condition["metadata"] = {**(condition.get("metadata") or {}), **metadata}

    changes: Dict[str, Any] = {
        "conditions_progress": conditions,
        "overall_progress": _overall_progress(conditions),
        "last_activity_at": now,
        "updated_at": now,
    }
    completed = all(c["is_completed"] for c in conditions)
    if completed:
        changes["status"] = "completed"
        changes["completed_at"] = now
    elif record["status"] in ("assigned", "started"):
        changes["status"] = "in_progress"
    if not record.get("started_at"):
        changes["started_at"] = now

    updated = db["user_quest"].find_one_and_update(
        {"_id": record["_id"], "status": {"$ne": "completed"}},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        return db["user_quest"].find_one({"_id": record["_id"]})

    if completed:
        db["quest"].update_one({"_id": to_object_id(quest_id)}, {"$inc": {"users_completed": 1}})
        logger.info("User %s completed quest %s", user_id, quest_id)
    return updated


# ---------- Reward settlement ----------

@dataclass
class RewardTotals:
    xp: int = 0
    hearts: int = 0
    gems: int = 0
    badges: List[str] = field(default_factory=list)

    @property
    def numeric_total(self) -> int:
        return self.xp + self.hearts + self.gems


@singledispatch
def settle(reward, totals: RewardTotals) -> None:
    raise TypeError(f"Unsupported reward {reward!r}")


@settle.register
def _(reward: XpReward, totals: RewardTotals) -> None:
    totals.xp += reward.value


@settle.register
def _(reward: HeartsReward, totals: RewardTotals) -> None:
    totals.hearts += reward.value


@settle.register
def _(reward: GemsReward, totals: RewardTotals) -> None:
    totals.gems += reward.value


@settle.register
def _(reward: BadgeReward, totals: RewardTotals) -> None:
    totals.badges.append(reward.value)


def claim_rewards(db: Database, user_id: str, user_quest_id: str, now: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
    """Grant a completed quest's rewards once.

    Returns None when the record is not completed or was already claimed,
    so retries are harmless.
    """
    now = now or utcnow()
    record = db["user_quest"].find_one({"_id": to_object_id(user_quest_id), "user_id": user_id})
    if not record or record["status"] != "completed" or record.get("rewards_settled_at"):
        return None

    quest = db["quest"].find_one({"_id": to_object_id(record["quest_id"])})
    if not quest:
        raise QuestNotFound()

    rewards = _reward_adapter.validate_python(quest.get("rewards") or [])
    totals = RewardTotals()
    stamp = int(now.replace(tzinfo=timezone.utc).timestamp() * 1000)
    claimed = []
    for reward in rewards:
        settle(reward, totals)
        claimed.append(
            ClaimedReward(
                reward_type=reward.type,
                reward_value=reward.value,
                claimed_at=now,
                transaction_id=f"quest_{record['quest_id']}_{stamp}",
            ).model_dump()
        )

    if not db["user"].find_one({"_id": to_object_id(user_id)}, {"_id": 1}):
        raise UserNotFound()

    # only one caller can stamp rewards_settled_at
    updated = db["user_quest"].find_one_and_update(
        {"_id": record["_id"], "status": "completed", "rewards_settled_at": None},
        {"$set": {
            "rewards_settled_at": now,
            "rewards_claimed": claimed,
            "total_rewards_value": totals.numeric_total,
            "updated_at": now,
        }},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        return None

    apply_quest_rewards(db, user_id, xp=totals.xp, hearts=totals.hearts, gems=totals.gems, badges=totals.badges)
    logger.info(
        "Settled quest %s for user %s: xp=%s hearts=%s gems=%s badges=%s",
        record["quest_id"], user_id, totals.xp, totals.hearts, totals.gems, totals.badges,
    )
    return {
        "user_quest": updated,
        "rewards": claimed,
        "total_value": totals.numeric_total,
        "total_xp_awarded": totals.xp,
        "total_hearts_awarded": totals.hearts,
        "total_gems_awarded": totals.gems,
        "badges_awarded": totals.badges,
    }


# ---------- Workflow ----------

def _current_record(db: Database, user_id: str, condition_type: str) -> Optional[Dict[str, Any]]:
    return db["user_quest"].find_one(
        {
            "user_id": user_id,
            "status": {"$in": ACTIVE_STATUSES},
            "conditions_progress.condition_type": condition_type,
        },
        sort=[("priority", DESCENDING), ("assigned_at", ASCENDING)],
    )


def record_activity(db: Database, user: Dict[str, Any], condition_type: str, increment_value) -> Dict[str, Any]:
    _positive_increment(increment_value)
    user_id = str(user["_id"])

    created = False
    record = _current_record(db, user_id, condition_type)
    if record is None:
        record, created = assign(db, user, condition_type)
    was_newly_assigned = created or record["status"] == "assigned"

    updated = increment_progress(db, user_id, record["quest_id"], condition_type, increment_value)

    claimed = None
    if updated["status"] == "completed" and not updated.get("rewards_settled_at"):
        claimed = claim_rewards(db, user_id, str(updated["_id"]))
        if claimed:
            updated = claimed["user_quest"]

    return {
        "user_quest": updated,
        "claimed_rewards": claimed,
        "was_completed": updated["status"] == "completed",
        "was_newly_assigned": was_newly_assigned,
    }


# ---------- Listing ----------

def list_user_quests(
    db: Database,
    user: Dict[str, Any],
    quest_type: Optional[str] = None,
    category: Optional[str] = None,
    difficulty: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    now = now or utcnow()
    user_id = str(user["_id"])

    quest_filter: Dict[str, Any] = {"status": "active", "is_visible": True}
    if quest_type:
        quest_filter["type"] = quest_type
    if category:
        quest_filter["category"] = category
    if difficulty:
        quest_filter["difficulty"] = difficulty

    all_quests = list(db["quest"].find(quest_filter).sort([("priority", DESCENDING), ("start_date", ASCENDING)]))
    progress_by_quest = {uq["quest_id"]: uq for uq in db["user_quest"].find({"user_id": user_id})}

    since = now - timedelta(days=config.COMPLETED_STATS_WINDOW_DAYS)
    completed_count = db["user_quest"].count_documents(
        {"user_id": user_id, "status": "completed", "completed_at": {"$gte": since}}
    )
    total_assigned = db["user_quest"].count_documents({"user_id": user_id})

    return {
        "quests": [project(q, progress_by_quest.get(str(q["_id"])), now) for q in all_quests],
        "stats": {
            "completedThisMonth": completed_count,
            "totalAssigned": total_assigned,
            "totalAvailable": len(all_quests),
            "xp": user.get("xp", 0),
            "streak": user.get("streak", 0),
        },
    }
