"""
Domain errors. Each one is an HTTPException with a fixed status code so the
engines can raise them directly and the app renders them uniformly.
"""

from fastapi import HTTPException


class AppError(HTTPException):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str = None):
        super().__init__(status_code=self.status_code, detail=message or self.default_message)

    @property
    def message(self) -> str:
        return self.detail


class Unauthorized(AppError):
    status_code = 401
    default_message = "Unauthorized"


class Forbidden(AppError):
    status_code = 403
    default_message = "Forbidden"


class ValidationError(AppError):
    status_code = 400
    default_message = "Invalid request"


class NotFound(AppError):
    status_code = 404
    default_message = "Not found"


class UserNotFound(NotFound):
    default_message = "User not found"


class QuestNotFound(NotFound):
    default_message = "Quest not found"


class ProgressRecordNotFound(NotFound):
    default_message = "Quest progress not found"


class TransactionNotFound(NotFound):
    default_message = "Pending transaction not found"


class LessonNotFound(NotFound):
    default_message = "Lesson not found"


class UserProgressNotFound(NotFound):
    default_message = "User progress not found"


class NoActiveQuestsForCondition(NotFound):
    default_message = "No active quests available for this condition"


class NoEligibleQuestError(NotFound):
    default_message = "No eligible quests found for this user"
