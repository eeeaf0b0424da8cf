"""Organization directory port and an in-memory implementation.

The engine only reads the directory. Lookups are synchronous: a directory
backed by a remote service is expected to serve them from a local cache.
"""

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Iterable

from hrflow.core.config import get_settings
from hrflow.services.workflow.schemas import Member, MemberStatus

logger = logging.getLogger(__name__)


class OrganizationDirectory(ABC):
    """Read-only view of members and their reporting lines."""

    @abstractmethod
    def find_member_by_id(self, member_id: str) -> Member | None:
        """Look up a member.

        @param member_id - Member ID
        @returns Member or None if unknown
        """

    @abstractmethod
    def get_manager_of(self, member_id: str) -> Member | None:
        """Get a member's direct manager.

        @param member_id - Member ID
        @returns Manager or None at the top of the hierarchy
        """

    @abstractmethod
    def get_filtered_members(self, filters: dict[str, Any] | None = None) -> list[Member]:
        """List members matching all given filters."""

    def is_empty(self) -> bool:
        """True when the directory holds no members."""
        return not self.get_filtered_members()


class InMemoryOrganizationDirectory(OrganizationDirectory):
    """Directory held in process memory.

    Supported filters for get_filtered_members:
    - department: exact department name
    - role: member holds this role
    - status: MemberStatus value
    - manager_id: direct reports of this member
    """

    def __init__(self, members: Iterable[Member] | None = None):
        self._members: dict[str, Member] = {}
        for member in members or []:
            self.add_member(member)

    def add_member(self, member: Member) -> None:
        """Insert or replace a member."""
        self._members[member.id] = member

    def remove_member(self, member_id: str) -> bool:
        """Remove a member. Reports keep their now dangling manager_id."""
        return self._members.pop(member_id, None) is not None

    def find_member_by_id(self, member_id: str) -> Member | None:
        return self._members.get(member_id)

    def get_manager_of(self, member_id: str) -> Member | None:
        member = self._members.get(member_id)
        if member is None or not member.manager_id:
            return None
        manager = self._members.get(member.manager_id)
        if manager is None:
            logger.warning(
                f"Member {member_id} references unknown manager {member.manager_id}"
            )
        return manager

    def get_filtered_members(self, filters: dict[str, Any] | None = None) -> list[Member]:
        filters = filters or {}
        results = list(self._members.values())

        if filters.get("department"):
            results = [m for m in results if m.department == filters["department"]]
        if filters.get("role"):
            results = [m for m in results if filters["role"] in m.roles]
        if filters.get("status"):
            status = MemberStatus(filters["status"])
            results = [m for m in results if m.status == status]
        if filters.get("manager_id"):
            results = [m for m in results if m.manager_id == filters["manager_id"]]

        return results

    def is_empty(self) -> bool:
        return not self._members

    def __len__(self) -> int:
        return len(self._members)


def load_members(path: str | Path) -> list[Member]:
    """Read members from a JSON file holding a list of member objects.

    @param path - Members file
    @returns Parsed members; empty when the file does not exist
    @throws ValueError - File is not a list of valid members
    """
    path = Path(path)
    if not path.exists():
        logger.warning(f"Members file not found: {path}")
        return []

    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise ValueError(f"Members file {path} must hold a JSON list")
    return [Member.model_validate(item) for item in data]


# Singleton instance
_directory: InMemoryOrganizationDirectory | None = None


def get_organization_directory() -> InMemoryOrganizationDirectory:
    """Get singleton organization directory, seeded from `organization_members_file`."""
    global _directory
    if _directory is None:
        path = get_settings().organization_members_file
        members = load_members(path) if path else []
        _directory = InMemoryOrganizationDirectory(members)
        logger.info(f"Organization directory loaded with {len(members)} member(s)")
    return _directory


def reset_organization_directory() -> None:
    """Reset the singleton (for testing)."""
    global _directory
    _directory = None
