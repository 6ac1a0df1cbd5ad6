import logging
from typing import Any, Dict, List, Optional

from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database

from database import create_document, to_object_id, utcnow
from errors import QuestNotFound
from schemas import Quest

logger = logging.getLogger(__name__)


def list_quests(db: Database, status: Optional[str] = None, quest_type: Optional[str] = None) -> List[Dict[str, Any]]:
    query: Dict[str, Any] = {}
    if status:
        query["status"] = status
    if quest_type:
        query["type"] = quest_type
    return list(db["quest"].find(query).sort([("priority", DESCENDING), ("start_date", ASCENDING)]))


def create_quest(db: Database, quest: Quest, created_by: str) -> Dict[str, Any]:
    quest.created_by = created_by
    quest_id = create_document(db, "quest", quest)
    logger.info("Quest %s created by %s", quest_id, created_by)
    return db["quest"].find_one({"_id": to_object_id(quest_id)})


def get_quest(db: Database, quest_id: str) -> Dict[str, Any]:
    quest = db["quest"].find_one({"_id": to_object_id(quest_id)})
    if not quest:
        raise QuestNotFound()
    return quest


def quest_analytics(quest: Dict[str, Any]) -> Dict[str, Any]:
    assigned = quest.get("users_assigned", 0)
    completed = quest.get("users_completed", 0)
    return {
        "usersAssigned": assigned,
        "usersCompleted": completed,
        "completionRate": round(completed / assigned * 100) if assigned > 0 else 0,
    }


def set_quest_status(db: Database, quest_id: str, status: str) -> Dict[str, Any]:
    quest = db["quest"].find_one_and_update(
        {"_id": to_object_id(quest_id)},
        {"$set": {"status": status, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if not quest:
        raise QuestNotFound()
    logger.info("Quest %s moved to %s", quest_id, status)
    return quest
