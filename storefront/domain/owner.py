# storefront/domain/owner.py
"""
Owner key of cart and buy-now state.

An anonymous shopper is identified by a session id, a logged in shopper by an
account id. A request resolves to exactly one of the two, never both.
"""
from dataclasses import dataclass
from typing import Dict, Union

from storefront.domain.errors import InvalidInput


@dataclass(frozen=True)
class Anonymous:
    session_id: str

    def __post_init__(self):
        if not self.session_id or not self.session_id.strip():
            raise InvalidInput("Session ID must not be empty", code="OWNER_REQUIRED")

    @property
    def lock_key(self) -> str:
        return f"session:{self.session_id}"

    def columns(self) -> Dict[str, str | int | None]:
        return {"session_id": self.session_id, "user_id": None}


@dataclass(frozen=True)
class Account:
    account_id: int

    def __post_init__(self):
        if self.account_id is None or self.account_id <= 0:
            raise InvalidInput("Account ID must be positive", code="OWNER_REQUIRED")

    @property
    def lock_key(self) -> str:
        return f"account:{self.account_id}"

    def columns(self) -> Dict[str, str | int | None]:
        return {"session_id": None, "user_id": self.account_id}


Owner = Union[Anonymous, Account]


def resolve_owner(user_id: int | None = None, session_id: str | None = None) -> Owner:
    # authenticated identity wins over the anonymous session cookie
    if user_id is not None:
        return Account(user_id)
    if session_id:
        return Anonymous(session_id)
    raise InvalidInput("Session ID or User ID is required", code="OWNER_REQUIRED")


def owner_from_columns(session_id: str | None, user_id: int | None) -> Owner:
    return resolve_owner(user_id=user_id, session_id=session_id)
