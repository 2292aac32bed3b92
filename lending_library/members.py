import logging
import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from .database import Database, from_iso, storage_errors, to_iso, utc_now
from .errors import DuplicateID, InvalidInput, MemberNotFound
from .validators import MemberValidator

logger = logging.getLogger(__name__)


@dataclass
class Identity:
    """Who is calling, as established by the external session/auth layer."""

    member_id: str
    role: str = "member"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


@dataclass
class Member:
    member_id: str
    name: str
    email: str
    role: str = "member"
    created_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "member_id": self.member_id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "created_at": to_iso(self.created_at),
        }

    @staticmethod
    def from_row(row: sqlite3.Row) -> "Member":
        return Member(
            member_id=row["MemberID"],
            name=row["Name"],
            email=row["Email"],
            role=row["Role"],
            created_at=from_iso(row["CreatedAt"]),
        )


class SQLiteMemberDirectory:
    """Minimal member records that loans point at. Credentials live elsewhere."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def register(self, name: str, email: str, role: str = "member", member_id: Optional[str] = None) -> Member:
        member = Member(
            member_id=self._clean_id(member_id) if member_id is not None else f"mem-{uuid.uuid4().hex[:8]}",
            name=MemberValidator.validate_name(name),
            email=MemberValidator.validate_email(email),
            role=MemberValidator.validate_role(role),
            created_at=utc_now(),
        )
        with storage_errors("register member", member.member_id), self.db.transaction() as conn:
            clash = conn.execute(
                "SELECT MemberID, Email FROM members WHERE MemberID = ? OR Email = ?",
                (member.member_id, member.email),
            ).fetchone()
            if clash is not None:
                which = "ID" if clash["MemberID"] == member.member_id else "email"
                raise DuplicateID(f"A member with this {which} already exists", member_id=member.member_id)
            conn.execute(
                "INSERT INTO members (MemberID, Name, Email, Role, CreatedAt) VALUES (?, ?, ?, ?, ?)",
                (member.member_id, member.name, member.email, member.role, to_iso(member.created_at)),
            )
        logger.info(f"Member registered: {member.member_id} ({member.role})")
        return member

    def get(self, member_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[Member]:
        with storage_errors("get member", member_id), self.db.connect(conn) as c:
            row = c.execute("SELECT * FROM members WHERE MemberID = ?", (member_id,)).fetchone()
        return Member.from_row(row) if row else None

    def require(self, member_id: str, conn: Optional[sqlite3.Connection] = None) -> Member:
        member = self.get(member_id, conn)
        if member is None:
            raise MemberNotFound(member_id)
        return member

    def list_all(self) -> List[Member]:
        with storage_errors("list members"), self.db.connect() as c:
            rows = c.execute("SELECT * FROM members ORDER BY Name COLLATE NOCASE, MemberID").fetchall()
        return [Member.from_row(row) for row in rows]

    @staticmethod
    def _clean_id(member_id: str) -> str:
        if not isinstance(member_id, str) or not member_id.strip():
            raise InvalidInput("Member ID must be a non-empty string", field="member_id")
        return member_id.strip()
