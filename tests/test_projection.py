from datetime import timedelta, timezone

import pytest
from bson import ObjectId

from projection import format_expires_in, project
from tests.conftest import NOW


def _quest(**fields):
    quest = {
        "_id": ObjectId(),
        "title": "Lesson sprint",
        "description": "Finish a few lessons today",
        "type": "daily",
        "category": "learning",
        "difficulty": "medium",
        "priority": 2,
        "is_featured": False,
        "conditions": [{"condition_id": "c1", "type": "complete_lessons", "target": 5}],
        "rewards": [{"type": "xp", "value": 50}],
        "end_date": NOW + timedelta(hours=5),
    }
    quest.update(fields)
    return quest


@pytest.mark.parametrize(
    "delta, expected",
    [
        (timedelta(days=2, hours=3), "2j 3h"),
        (timedelta(days=2), "2j"),
        (timedelta(hours=5, minutes=10), "5h 10m"),
        (timedelta(minutes=45), "45m"),
        (timedelta(seconds=30), "Soon"),
        (timedelta(hours=-1), "Soon"),
    ],
)
def test_format_expires_in(delta, expected):
    assert format_expires_in(NOW + delta, NOW) == expected


def test_format_expires_in_handles_aware_datetimes():
    end = (NOW + timedelta(minutes=45)).replace(tzinfo=timezone.utc)
    assert format_expires_in(end, NOW) == "45m"


def test_format_expires_in_without_end_date():
    assert format_expires_in(None, NOW) == "Soon"


def test_project_without_progress():
    quest = _quest()

    view = project(quest, None, NOW)

    assert view["id"] == view["questId"] == str(quest["_id"])
    assert view["status"] == "active"
    assert view["progress"] == 0
    assert view["total"] == 5
    assert view["xpReward"] == 50
    assert view["heartsReward"] is None
    assert view["badgeReward"] is None
    assert view["expiresIn"] == "5h 0m"
    assert view["conditionsProgress"] == [
        {
            "condition_id": "c1",
            "condition_type": "complete_lessons",
            "current_value": 0,
            "target_value": 5,
            "is_completed": False,
            "metadata": {},
        }
    ]
    assert view["rewardsClaimed"] is False
    assert view["hasUserProgress"] is False
    assert view["userQuestId"] is None


def test_project_with_progress():
    quest = _quest(rewards=[{"type": "xp", "value": 20}, {"type": "hearts", "value": 2}, {"type": "badge", "value": "owl"}])
    progress = {
        "_id": ObjectId(),
        "status": "completed",
        "overall_progress": 100,
        "priority": 7,
        "conditions_progress": [
            {"condition_id": "c1", "condition_type": "complete_lessons", "current_value": 6, "target_value": 5, "is_completed": True}
        ],
        "assigned_at": NOW - timedelta(days=1),
        "completed_at": NOW,
        "rewards_claimed": [{"reward_type": "xp", "reward_value": 20}],
    }

    view = project(quest, progress, NOW)

    assert view["status"] == "completed"
    assert view["progress"] == 6
    assert view["overallProgress"] == 100
    assert view["heartsReward"] == 2
    assert view["badgeReward"] == "owl"
    assert view["rewardsClaimed"] is True
    assert view["priority"] == 7
    assert view["completedAt"] == NOW
    assert view["userQuestId"] == str(progress["_id"])
    assert view["conditionsProgress"] is progress["conditions_progress"]


@pytest.mark.parametrize(
    "status, expected",
    [("assigned", "active"), ("started", "active"), ("in_progress", "active"), ("completed", "completed"), ("failed", "locked")],
)
def test_project_status_mapping(status, expected):
    view = project(_quest(), {"_id": ObjectId(), "status": status, "conditions_progress": []}, NOW)
    assert view["status"] == expected


@pytest.mark.parametrize(
    "quest_type, duration",
    [("daily", "daily"), ("weekly", "weekly"), ("monthly", "monthly"), ("event", "special"), ("achievement", "special")],
)
def test_project_duration_mapping(quest_type, duration):
    assert project(_quest(type=quest_type), None, NOW)["duration"] == duration


def test_project_maps_expert_to_hard():
    view = project(_quest(difficulty="expert"), None, NOW)
    assert view["difficulty"] == "hard"
    assert view["questDifficulty"] == "expert"
