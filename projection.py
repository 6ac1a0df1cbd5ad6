"""Merges a quest definition with a user's progress into the view the app renders."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

DIFFICULTY_VIEW = {"easy": "easy", "medium": "medium", "hard": "hard", "expert": "hard"}
DURATION_VIEW = {"daily": "daily", "weekly": "weekly", "monthly": "monthly"}
STATUS_VIEW = {
    "completed": "completed",
    "assigned": "active",
    "started": "active",
    "in_progress": "active",
}


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def format_expires_in(end_date: Optional[datetime], now: datetime) -> str:
    if end_date is None:
        return "Soon"
    remaining = max(0, int((_naive_utc(end_date) - _naive_utc(now)).total_seconds()))
    days, rest = divmod(remaining, 86400)
    hours, rest = divmod(rest, 3600)
    minutes = rest // 60

    if days > 0:
        return f"{days}j {hours}h" if hours > 0 else f"{days}j"
    if hours > 0:
        return f"{hours}h {minutes}m"
    if minutes > 0:
        return f"{minutes}m"
    return "Soon"


def fresh_conditions_progress(quest: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [
        {
            "condition_id": condition["condition_id"],
            "condition_type": condition["type"],
            "current_value": 0,
            "target_value": condition["target"],
            "is_completed": False,
            "metadata": {},
        }
        for condition in quest.get("conditions", [])
    ]


def _reward_value(quest: Dict[str, Any], reward_type: str):
    for reward in quest.get("rewards", []):
        if reward.get("type") == reward_type:
            return reward.get("value")
    return None


def project(quest: Dict[str, Any], progress: Optional[Dict[str, Any]], now: datetime) -> Dict[str, Any]:
    """Build the QuestView for one quest. Pure: reads its inputs only."""
    if progress is not None:
        status = STATUS_VIEW.get(progress.get("status"), "locked")
        conditions_progress = progress.get("conditions_progress") or []
        overall_progress = progress.get("overall_progress") or 0
        assigned_at = progress.get("assigned_at")
        started_at = progress.get("started_at")
        completed_at = progress.get("completed_at")
        rewards_claimed = progress.get("rewards_settled_at") is not None or len(progress.get("rewards_claimed") or []) > 0
    else:
        status = "active"
        conditions_progress = fresh_conditions_progress(quest)
        overall_progress = 0
        assigned_at = started_at = completed_at = None
        rewards_claimed = False

    first_progress = conditions_progress[0].get("current_value", 0) if conditions_progress else 0
    conditions = quest.get("conditions", [])
    hearts_reward = _reward_value(quest, "hearts") or 0
    quest_id = str(quest["_id"])

    return {
        "id": quest_id,
        "questId": quest_id,
        "title": quest.get("title"),
        "description": quest.get("description"),
        "status": status,
        "difficulty": DIFFICULTY_VIEW.get(quest.get("difficulty"), "medium"),
        "duration": DURATION_VIEW.get(quest.get("type"), "special"),
        "progress": first_progress or 0,
        "total": conditions[0]["target"] if conditions else 1,
        "xpReward": _reward_value(quest, "xp") or 0,
        "badgeReward": _reward_value(quest, "badge"),
        "heartsReward": hearts_reward if hearts_reward > 0 else None,
        "expiresIn": format_expires_in(quest.get("end_date"), now),
        "category": quest.get("category"),
        "overallProgress": overall_progress,
        "conditionsProgress": conditions_progress,
        "assignedAt": assigned_at,
        "startedAt": started_at,
        "completedAt": completed_at,
        "rewardsClaimed": rewards_claimed,
        "priority": (progress or {}).get("priority") or quest.get("priority") or 0,
        "isFeatured": quest.get("is_featured", False),
        "questType": quest.get("type"),
        "questCategory": quest.get("category"),
        "questDifficulty": quest.get("difficulty"),
        "userQuestId": str(progress["_id"]) if progress is not None and "_id" in progress else None,
        "hasUserProgress": progress is not None,
    }
