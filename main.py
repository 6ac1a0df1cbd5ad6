import logging
import os
from contextlib import asynccontextmanager
from typing import Annotated, Any, Dict, Optional, Union

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, EmailStr, Field, StrictInt
from pydantic.alias_generators import to_camel
from pymongo.database import Database
from starlette.exceptions import HTTPException as StarletteHTTPException

import accounts
import catalog
import config
import database
import ledger
import quests
import subscriptions
from auth import current_identity, require_admin
from database import ensure_indexes, get_database
from errors import UserNotFound, ValidationError
from schemas import ConditionType, LedgerRewardType, PaymentProvider, Quest, QuestStatus, TransactionStatus

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        ensure_indexes(database.db)
    yield


app = FastAPI(title="Lingo Quests API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.detail})


@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": "validation error",
            "errors": [{"loc": list(e["loc"]), "msg": e["msg"], "type": e["type"]} for e in exc.errors()],
        },
    )


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    content = {"success": False, "error": "Internal server error"}
    if config.is_development():
        content["message"] = str(exc)
    return JSONResponse(status_code=500, content=content)


@app.get("/")
def read_root():
    return {"message": "Lingo Quests Backend is running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        if database.db is not None:
            response["database"] = "✅ Available"
            response["connection_status"] = "Connected"
            try:
                response["collections"] = database.db.list_collection_names()[:10]
                response["database"] = "✅ Connected & Working"
            except Exception as e:
                response["database"] = f"⚠️ Connected but Error: {str(e)[:80]}"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"

    response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
    response["database_name"] = "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set"
    return response


# ---------- Utilities ----------

class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _sanitize(doc: Optional[dict]):
    if not doc:
        return doc
    d = dict(doc)
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d


# ---------- Quests ----------

PositiveCount = Annotated[StrictInt, Field(gt=0)]
PositiveMeasure = Annotated[float, Field(gt=0, allow_inf_nan=False)]


class QuestProgressPayload(ApiModel):
    condition_type: ConditionType = "complete_lessons"
    increment_value: Union[PositiveCount, PositiveMeasure] = 1


@app.get("/api/users/{user_id}/quests")
def get_user_quests(
    user_id: str,
    quest_type: Optional[str] = Query(None, alias="type"),
    category: Optional[str] = None,
    difficulty: Optional[str] = None,
    identity: str = Depends(current_identity),
    db: Database = Depends(get_database),
):
    user = accounts.find_user(db, user_id)
    if not user:
        # first visit of the caller's own profile creates the account
        if user_id != identity:
            raise UserNotFound()
        user = accounts.ensure_user(db, user_id)

    data = quests.list_user_quests(db, user, quest_type=quest_type, category=category, difficulty=difficulty)
    return {"success": True, "data": data}


@app.put("/api/users/{user_id}/quests")
def update_user_quest_progress(
    user_id: str,
    payload: QuestProgressPayload,
    identity: str = Depends(current_identity),
    db: Database = Depends(get_database),
):
    user = accounts.get_user(db, user_id)
    result = quests.record_activity(db, user, payload.condition_type, payload.increment_value)

    claimed = result["claimed_rewards"]
    if claimed:
        claimed = {**claimed, "user_quest": _sanitize(claimed["user_quest"])}
    return {
        "success": True,
        "data": {
            "userQuest": _sanitize(result["user_quest"]),
            "claimedRewards": claimed,
            "wasCompleted": result["was_completed"],
            "wasNewlyAssigned": result["was_newly_assigned"],
        },
        "message": "Quest completed! Rewards claimed." if result["was_completed"] else "Quest progress updated successfully",
    }


# ---------- Balances ----------

class BalancePayload(BaseModel):
    amount: PositiveCount


def _balance_action(action: Optional[str]) -> str:
    if action not in ("inc", "dec"):
        raise ValidationError("Invalid action. Must be 'inc' or 'dec'")
    return action


@app.put("/api/users/{user_id}/hearts")
def update_hearts(
    user_id: str,
    payload: BalancePayload,
    action: Optional[str] = None,
    identity: str = Depends(current_identity),
    db: Database = Depends(get_database),
):
    action = _balance_action(action)
    user = accounts.get_user(db, user_id)
    if action == "inc":
        updated = accounts.grant_hearts(db, user, payload.amount)
    else:
        updated = accounts.spend_hearts(db, user, payload.amount)
    return {
        "success": True,
        "data": {
            "userId": str(updated["_id"]),
            "previousHearts": user.get("hearts", 0),
            "newHearts": updated["hearts"],
            "amountChanged": payload.amount if action == "inc" else -payload.amount,
            "action": action,
        },
        "message": f"Successfully {'added' if action == 'inc' else 'removed'} {payload.amount} hearts",
    }


@app.put("/api/users/{user_id}/gems")
def update_gems(
    user_id: str,
    payload: BalancePayload,
    action: Optional[str] = None,
    identity: str = Depends(current_identity),
    db: Database = Depends(get_database),
):
    action = _balance_action(action)
    user = accounts.get_user(db, user_id)
    if action == "inc":
        updated = accounts.grant_gems(db, user, payload.amount)
    else:
        updated = accounts.spend_gems(db, user, payload.amount)
    return {
        "success": True,
        "data": {
            "userId": str(updated["_id"]),
            "previousGems": user.get("gems", 0),
            "newGems": updated["gems"],
            "amountChanged": payload.amount if action == "inc" else -payload.amount,
            "action": action,
        },
        "message": f"Successfully {'added' if action == 'inc' else 'removed'} {payload.amount} gems",
    }


# ---------- Lesson rewards ----------

class AddRewardPayload(ApiModel):
    type: LedgerRewardType
    amount: int = Field(..., gt=0)
    reason: Optional[str] = None
    lesson_id: str


@app.post("/api/progress/add-reward", status_code=201)
def add_reward(
    payload: AddRewardPayload,
    identity: str = Depends(current_identity),
    db: Database = Depends(get_database),
):
    progress = ledger.add_reward(db, identity, payload.lesson_id, payload.type, payload.amount, payload.reason)
    return {
        "success": True,
        "message": "Reward added successfully",
        "rewardHistory": progress.get("reward_history", []),
    }


# ---------- Subscriptions ----------

class CreateSubscriptionPayload(ApiModel):
    plan_id: Optional[str] = Field(None, min_length=24, max_length=24)
    amount: float = Field(..., gt=0)
    currency: str = Field("USD", pattern=r"^[A-Z]{3}$")
    provider: PaymentProvider = "stripe"
    billing_cycle: Optional[str] = None
    description: str = Field(..., min_length=5)
    email: EmailStr
    name: str
    session_id: Optional[str] = None


class UpdateSubscriptionPayload(ApiModel):
    session_id: Optional[str] = None
    transaction_id: Optional[str] = None
    status: TransactionStatus = "completed"
    stripe_data: Optional[Dict[str, Any]] = None


@app.post("/api/users/{user_id}/subscriptions")
def create_subscription(
    user_id: str,
    payload: CreateSubscriptionPayload,
    request: Request,
    identity: str = Depends(current_identity),
    db: Database = Depends(get_database),
):
    user = accounts.get_user(db, user_id)
    transaction, is_existing = subscriptions.create_transaction(
        db,
        user,
        plan_id=payload.plan_id,
        amount=payload.amount,
        currency=payload.currency,
        provider=payload.provider,
        billing_cycle=payload.billing_cycle,
        description=payload.description,
        email=str(payload.email),
        name=payload.name,
        session_id=payload.session_id,
        user_agent=request.headers.get("user-agent"),
        ip_address=request.headers.get("x-forwarded-for") or request.headers.get("x-real-ip"),
    )
    return {
        "success": True,
        "message": "Existing pending transaction found" if is_existing else "Transaction created successfully",
        "data": {
            "transaction": _sanitize(transaction),
            "transactionId": transaction["transaction_id"],
            "isExisting": is_existing,
        },
    }


@app.put("/api/users/{user_id}/subscriptions")
def update_subscription(
    user_id: str,
    payload: UpdateSubscriptionPayload,
    identity: str = Depends(current_identity),
    db: Database = Depends(get_database),
):
    user = accounts.get_user(db, user_id)
    transaction, subscription_updated = subscriptions.update_transaction(
        db,
        user,
        status=payload.status,
        session_id=payload.session_id,
        transaction_id=payload.transaction_id,
        stripe_data=payload.stripe_data,
    )
    return {
        "success": True,
        "message": f"Transaction {payload.status} successfully",
        "data": {"transaction": _sanitize(transaction), "subscriptionUpdated": subscription_updated},
    }


@app.get("/api/users/{user_id}/subscriptions")
def list_subscriptions(
    user_id: str,
    status: Optional[TransactionStatus] = None,
    limit: int = Query(10, ge=1, le=100),
    page: int = Query(1, ge=1),
    identity: str = Depends(current_identity),
    db: Database = Depends(get_database),
):
    user = accounts.get_user(db, user_id)
    data = subscriptions.list_transactions(db, user, status=status, limit=limit, page=page)
    data["transactions"] = [_sanitize(t) for t in data["transactions"]]
    return {"success": True, "data": data}


# ---------- Quest catalog (admin) ----------

class QuestStatusPayload(BaseModel):
    status: QuestStatus


@app.get("/api/admin/quests")
def admin_list_quests(
    status: Optional[QuestStatus] = None,
    quest_type: Optional[str] = Query(None, alias="type"),
    admin: str = Depends(require_admin),
    db: Database = Depends(get_database),
):
    items = catalog.list_quests(db, status=status, quest_type=quest_type)
    return {"success": True, "data": [_sanitize(q) for q in items]}


@app.post("/api/admin/quests", status_code=201)
def admin_create_quest(
    payload: Quest,
    admin: str = Depends(require_admin),
    db: Database = Depends(get_database),
):
    quest = catalog.create_quest(db, payload, created_by=admin)
    return {"success": True, "data": _sanitize(quest)}


@app.get("/api/admin/quests/{quest_id}")
def admin_get_quest(
    quest_id: str,
    admin: str = Depends(require_admin),
    db: Database = Depends(get_database),
):
    quest = catalog.get_quest(db, quest_id)
    return {"success": True, "data": {"quest": _sanitize(quest), "analytics": catalog.quest_analytics(quest)}}


@app.patch("/api/admin/quests/{quest_id}/status")
def admin_set_quest_status(
    quest_id: str,
    payload: QuestStatusPayload,
    admin: str = Depends(require_admin),
    db: Database = Depends(get_database),
):
    quest = catalog.set_quest_status(db, quest_id, payload.status)
    return {"success": True, "data": _sanitize(quest)}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
