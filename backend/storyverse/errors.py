from __future__ import annotations
from typing import Any
from uuid import UUID


class CoinError(Exception):
    """Business-rule failure with an HTTP status and a structured body."""
    status_code = 400
    code = "COIN_ERROR"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.code.lower()
        super().__init__(self.detail)

    def payload(self) -> dict[str, Any]:
        return {"error": self.code, "detail": self.detail}


class InvalidAmount(CoinError):
    code = "INVALID_AMOUNT"


class InvalidChapter(CoinError):
    code = "INVALID_CHAPTER"


class InvalidChoice(CoinError):
    code = "INVALID_CHOICE"


class UserNotFound(CoinError):
    status_code = 404
    code = "USER_NOT_FOUND"


class TransactionNotFound(CoinError):
    status_code = 404
    code = "TRANSACTION_NOT_FOUND"


class RunNotFound(CoinError):
    status_code = 404
    code = "RUN_NOT_FOUND"


class NodeNotFound(CoinError):
    status_code = 404
    code = "NODE_NOT_FOUND"


class RuleDisabledOrMissing(CoinError):
    status_code = 404
    code = "RULE_DISABLED_OR_MISSING"

    def __init__(self, rule_key: str):
        self.rule_key = rule_key
        super().__init__(f"reward rule {rule_key!r} is missing or disabled")

    def payload(self) -> dict[str, Any]:
        return {"error": self.code, "detail": self.detail, "rule_key": self.rule_key}


class InsufficientBalance(CoinError):
    status_code = 409
    code = "INSUFFICIENT_BALANCE"

    def __init__(self, available: int, required: int):
        self.available = int(available)
        self.required = int(required)
        super().__init__(f"need {self.required}, have {self.available}")

    def payload(self) -> dict[str, Any]:
        return {"error": self.code, "available": self.available, "required": self.required}


class InsufficientCoins(InsufficientBalance):
    """Raised by the chapter gate; the reader sees a paywall."""
    status_code = 402
    code = "INSUFFICIENT_COINS"


class AlreadyRefunded(CoinError):
    status_code = 409
    code = "ALREADY_REFUNDED"

    def __init__(self, transaction_id: UUID):
        self.transaction_id = transaction_id
        super().__init__(f"transaction {transaction_id} was already refunded")

    def payload(self) -> dict[str, Any]:
        return {"error": self.code, "detail": self.detail, "transaction_id": str(self.transaction_id)}


class AlreadyUnlocked(CoinError):
    status_code = 409
    code = "ALREADY_UNLOCKED"

    def __init__(self, story_id: UUID, chapter_number: int):
        self.story_id = story_id
        self.chapter_number = chapter_number
        super().__init__(f"chapter {chapter_number} is already unlocked")

    def payload(self) -> dict[str, Any]:
        return {
            "ok": True,
            "unlocked": True,
            "alreadyUnlocked": True,
            "storyId": str(self.story_id),
            "chapterNumber": self.chapter_number,
        }


class ChapterLocked(CoinError):
    status_code = 403
    code = "CHAPTER_LOCKED"

    def __init__(self, *, chapter_number: int, required_coins: int, available: int, story_id: UUID, run_id: UUID):
        self.chapter_number = chapter_number
        self.required_coins = required_coins
        self.available = available
        self.story_id = story_id
        self.run_id = run_id
        super().__init__(f"chapter {chapter_number} is locked")

    def payload(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "chapterNumber": self.chapter_number,
            "requiredCoins": self.required_coins,
            "available": self.available,
            "storyId": str(self.story_id),
            "runId": str(self.run_id),
        }
