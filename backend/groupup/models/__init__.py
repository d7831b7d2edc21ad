"""
ORM models. Importing this package registers every table on Base.metadata,
which Alembic and the test fixtures rely on.
"""

from groupup.models.building import Building
from groupup.models.group import Group, GroupFile, GroupMember
from groupup.models.organization import Organization
from groupup.models.user import AuthSession, User

__all__ = [
    "AuthSession",
    "Building",
    "Group",
    "GroupFile",
    "GroupMember",
    "Organization",
    "User",
]
