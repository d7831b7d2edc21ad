"""
GroupUp Backend - Actors
========================

What:  Who performed an action: a signed-in user or an anonymous visitor.
Why:   Groups may be created, joined and uploaded to without an account. The
       relational schema records that as a NULL creator/uploader column;
       everywhere else the code works with this explicit sum type instead of
       scattering `if user_id is None` checks.

    Actor = UserActor | AnonymousActor

Conversions:
    - `actor_from_user_id(None)`      -> ANONYMOUS
    - `actor_from_user_id("u-1")`     -> UserActor("u-1")
    - `actor.user_id`                 -> value for a nullable FK column
"""

from dataclasses import dataclass
from typing import Optional, Union


@dataclass(frozen=True)
class UserActor:
    """An authenticated user, resolved from a live session."""

    user_id: str
    email: Optional[str] = None
    name: Optional[str] = None


@dataclass(frozen=True)
class AnonymousActor:
    """A visitor without a session."""

    @property
    def user_id(self) -> None:
        return None


Actor = Union[UserActor, AnonymousActor]

ANONYMOUS = AnonymousActor()


def actor_from_user_id(user_id: Optional[str]) -> Actor:
    if user_id is None:
        return ANONYMOUS
    return UserActor(user_id=user_id)
