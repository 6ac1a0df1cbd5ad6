import logging
from typing import Any, Dict, Optional

from pymongo import ReturnDocument
from pymongo.database import Database

from database import to_object_id, utcnow
from errors import LessonNotFound, UserProgressNotFound
from schemas import RewardHistoryEntry

logger = logging.getLogger(__name__)


def add_reward(
    db: Database,
    clerk_id: str,
    lesson_id: str,
    reward_type: str,
    amount: int,
    reason: Optional[str] = None,
) -> Dict[str, Any]:
    """Credit a lesson reward to the learner's progress for that lesson's
    language and record it in the reward history."""
    lesson = db["lesson"].find_one({"_id": to_object_id(lesson_id)}, {"language_id": 1})
    if not lesson or not lesson.get("language_id"):
        raise LessonNotFound("Lesson not found or missing languageId")

    entry = RewardHistoryEntry(lesson_id=lesson_id, type=reward_type, amount=amount, reason=reason, date=utcnow())
    progress = db["user_progress"].find_one_and_update(
        {"user_id": clerk_id, "language_id": str(lesson["language_id"])},
        {"$inc": {reward_type: amount}, "$push": {"reward_history": entry.model_dump()}},
        return_document=ReturnDocument.AFTER,
    )
    if progress is None:
        raise UserProgressNotFound()

    logger.info("Added %s %s to %s for lesson %s", amount, reward_type, clerk_id, lesson_id)
    return progress
