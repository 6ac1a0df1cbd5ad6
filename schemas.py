"""
Database Schemas for Lingo Quests

Each Pydantic model corresponds to a MongoDB collection. The collection name
is the snake_case of the class name. Example: UserQuest -> "user_quest".
"""

from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from bson import ObjectId
from pydantic import BaseModel, EmailStr, Field, field_validator

Number = Union[int, float]

ConditionType = Literal[
    "complete_lessons",
    "earn_xp",
    "maintain_streak",
    "perfect_lessons",
    "practice_minutes",
    "complete_units",
    "learn_words",
    "use_hearts",
    "custom",
]
QuestStatus = Literal["draft", "active", "paused", "completed", "expired", "cancelled", "locked"]
UserQuestStatus = Literal["assigned", "started", "in_progress", "completed"]
TransactionStatus = Literal["pending", "completed", "failed", "cancelled", "refunded"]
PaymentProvider = Literal["stripe", "paypal", "apple_pay", "google_pay", "bank_transfer", "crypto"]
LedgerRewardType = Literal["xp", "gems", "gel"]


def _new_id() -> str:
    return str(ObjectId())


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class User(BaseModel):
    """Learner account and gamification balances"""
    clerk_id: str = Field(..., description="Identity provider user id")
    email: Optional[EmailStr] = Field(None, description="Primary email address")
    name: Optional[str] = Field(None, description="Display name")
    role: Literal["user", "admin"] = Field("user", description="Authorization role")
    xp: int = Field(0, ge=0, description="Cumulative experience points")
    gems: int = Field(0, ge=0)
    gel: int = Field(0, ge=0)
    hearts: int = Field(5, ge=0, le=5, description="Lives, capped at 5")
    streak: int = Field(0, ge=0, description="Current daily streak")
    achievements: List[str] = Field(default_factory=list, description="Unlocked badges")
    subscription_status: Optional[Literal["active", "cancelled", "expired"]] = None
    subscription_plan_id: Optional[str] = None
    subscription_start_date: Optional[datetime] = None
    subscription_end_date: Optional[datetime] = None


# ---------- Quest catalog ----------

class QuestCondition(BaseModel):
    condition_id: str = Field(default_factory=_new_id)
    type: ConditionType = "earn_xp"
    target: Number = Field(..., description="Value to reach")
    timeframe: Literal["daily", "weekly", "monthly", "total", "session"] = "total"
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("target")
    @classmethod
    def _positive_target(cls, value):
        if value <= 0:
            raise ValueError("target must be greater than 0")
        return value


class XpReward(BaseModel):
    type: Literal["xp"] = "xp"
    value: int = Field(..., ge=0)


class GemsReward(BaseModel):
    type: Literal["gems"] = "gems"
    value: int = Field(..., ge=0)


class HeartsReward(BaseModel):
    type: Literal["hearts"] = "hearts"
    value: int = Field(..., ge=0)


class BadgeReward(BaseModel):
    type: Literal["badge"] = "badge"
    value: str = Field(..., min_length=1, description="Badge identifier")


Reward = Annotated[Union[XpReward, GemsReward, HeartsReward, BadgeReward], Field(discriminator="type")]


class Quest(BaseModel):
    """Quest definition, edited by administrators only"""
    title: str = Field(..., min_length=2, max_length=100)
    description: str = Field(..., min_length=10, max_length=255)
    goal: Optional[str] = Field(None, max_length=100, description="Human-readable goal")
    type: Literal["daily", "weekly", "monthly", "special", "event", "achievement", "custom"] = "daily"
    category: Literal["learning", "engagement", "social", "achievement", "challenge", "special"] = "learning"
    difficulty: Literal["easy", "medium", "hard", "expert"] = "medium"
    status: QuestStatus = "draft"
    conditions: List[QuestCondition] = Field(..., min_length=1)
    rewards: List[Reward] = Field(default_factory=list)
    start_date: datetime
    end_date: datetime
    priority: int = Field(0, description="Higher priority quests are shown first")
    is_visible: bool = True
    is_featured: bool = False
    users_assigned: int = Field(0, ge=0)
    users_completed: int = Field(0, ge=0)
    created_by: Optional[str] = None

    @field_validator("start_date", "end_date")
    @classmethod
    def _store_as_naive_utc(cls, value: datetime) -> datetime:
        return _naive_utc(value)


# ---------- Per-user quest progress ----------

class ConditionProgress(BaseModel):
    condition_id: str
    condition_type: ConditionType
    current_value: Number = 0
    target_value: Number
    is_completed: bool = False
    completed_at: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ClaimedReward(BaseModel):
    reward_type: str
    reward_value: Union[int, str]
    claimed_at: datetime
    transaction_id: str


class UserQuest(BaseModel):
    """A user's progress through one quest; unique per (user_id, quest_id)"""
    user_id: str
    quest_id: str
    status: UserQuestStatus = "assigned"
    overall_progress: Number = 0
    conditions_progress: List[ConditionProgress] = Field(default_factory=list)
    assigned_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    last_activity_at: Optional[datetime] = None
    rewards_claimed: List[ClaimedReward] = Field(default_factory=list)
    rewards_settled_at: Optional[datetime] = Field(None, description="Set once, when settlement runs")
    total_rewards_value: int = 0
    source: Literal["auto_assigned", "user_selected", "admin_assigned", "event"] = "auto_assigned"
    priority: int = 0


# ---------- Payments ----------

class PaymentTransaction(BaseModel):
    """Subscription payment attempt; pending until the provider settles it"""
    transaction_id: str
    user_id: str
    type: Literal["subscription", "one-time", "refund", "chargeback", "adjustment"] = "subscription"
    item_type: str = "subscription"
    status: TransactionStatus = "pending"
    amount: int = Field(..., gt=0, description="Minor currency units")
    currency: str = Field("USD", min_length=3, max_length=3)
    payment_provider: PaymentProvider = "stripe"
    payment_method_type: str = "card"
    plan_id: Optional[str] = None
    description: str
    billing_address: Dict[str, Optional[str]] = Field(default_factory=dict)
    provider_data: Dict[str, Any] = Field(default_factory=dict)
    processed_at: Optional[datetime] = None
    settled_at: Optional[datetime] = None


# ---------- Lesson rewards ledger ----------

class Lesson(BaseModel):
    title: str
    language_id: str


class RewardHistoryEntry(BaseModel):
    lesson_id: str
    type: LedgerRewardType
    amount: int
    reason: Optional[str] = None
    date: datetime


class UserProgress(BaseModel):
    """Per-language learning aggregate with its reward history"""
    user_id: str = Field(..., description="Identity provider user id")
    language_id: str
    xp: int = 0
    gems: int = 0
    gel: int = 0
    reward_history: List[RewardHistoryEntry] = Field(default_factory=list)


# ---------- Auth ----------

class Session(BaseModel):
    """Bearer token issued by the identity provider"""
    token: str
    user_id: str = Field(..., description="Identity provider user id")
    expires_at: Optional[datetime] = None
