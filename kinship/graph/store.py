"""
Kinship Store - SQLite storage for members, unions and marriages.

This is a DATA LAYER component:
- Handles database operations for members, unions and marriages tables
- NO business logic (the lifecycle manager and passes decide what to write)
- Enforces the compound uniqueness constraints at the storage layer

Tables:
- members: Person documents with lineage back-pointers and legacy fields
- unions: Union edges; unordered pair unique among live (non-Deceased) rows
- marriages: Legacy husband/wife edges; ordered pair unique
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, Optional, List

from loguru import logger

from kinship.config import settings
from kinship.errors import DuplicateMarriage, DuplicateUnion, ValidationError
from kinship.graph.models import (
    FamilyLineageLinks,
    LineageLinks,
    Marriage,
    Member,
    Union,
    UnionStatus,
    VerificationStatus,
    validate_document,
)

# Columns a caller may update on a member row
MEMBER_FIELDS = (
    "first_name", "middle_name", "last_name", "full_name",
    "gender", "marital_status",
    "current_union_id", "parental_union_id",
    "spouse_id", "state", "district", "city", "village",
    "state_name", "district_name", "taluka_name", "village_name",
)

MAX_ID_ATTEMPTS = 5


def _enum_value(value):
    return getattr(value, "value", value)


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


class KinshipStore:
    """Document-style CRUD over SQLite for the kinship graph."""

    def __init__(self, db_path: str = None, busy_timeout: float = None):
        self.db_path = db_path or settings.database.path
        self.busy_timeout = busy_timeout or settings.database.busy_timeout
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    @contextmanager
    def _connection(self, immediate: bool = False):
        """Open a connection wrapped in one transaction.

        immediate=True takes the database write lock up front, which
        serializes concurrent writers for read-then-write sequences.
        """
        conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA foreign_keys = ON")
            conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    def _init_db(self):
        """Initialize members, unions and marriages tables."""
        with self._connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS members (
                    id TEXT PRIMARY KEY,
                    first_name TEXT NOT NULL,
                    middle_name TEXT DEFAULT '',
                    last_name TEXT DEFAULT '',
                    full_name TEXT DEFAULT '',
                    gender TEXT CHECK (gender IS NULL OR gender IN ('Male', 'Female')),
                    marital_status TEXT,

                    current_union_id TEXT,
                    parental_union_id TEXT,
                    family_lineage_links TEXT,

                    spouse_id TEXT,
                    state TEXT,
                    district TEXT,
                    city TEXT,
                    village TEXT,

                    state_name TEXT,
                    district_name TEXT,
                    taluka_name TEXT,
                    village_name TEXT,

                    created_at TEXT,
                    updated_at TEXT
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS unions (
                    union_id TEXT PRIMARY KEY,
                    husband_id TEXT NOT NULL,
                    wife_id TEXT NOT NULL,
                    pair_low TEXT NOT NULL,
                    pair_high TEXT NOT NULL,
                    marriage_date TEXT,
                    marriage_place TEXT,
                    union_type TEXT NOT NULL DEFAULT 'marriage',
                    children_ids TEXT NOT NULL DEFAULT '[]',
                    status TEXT NOT NULL DEFAULT 'Active',

                    is_verified INTEGER DEFAULT 0,
                    verification_status TEXT NOT NULL DEFAULT 'Pending',
                    verified_by TEXT,
                    verified_at TEXT,
                    rejection_reason TEXT,

                    created_at TEXT,
                    updated_at TEXT,
                    created_by TEXT,

                    CHECK (husband_id != wife_id),
                    FOREIGN KEY (husband_id) REFERENCES members(id),
                    FOREIGN KEY (wife_id) REFERENCES members(id)
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS marriages (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    husband_id TEXT NOT NULL,
                    wife_id TEXT NOT NULL,
                    marriage_date TEXT,
                    status TEXT NOT NULL DEFAULT 'Active',
                    created_at TEXT,
                    updated_at TEXT,

                    UNIQUE (husband_id, wife_id),
                    CHECK (husband_id != wife_id),
                    FOREIGN KEY (husband_id) REFERENCES members(id),
                    FOREIGN KEY (wife_id) REFERENCES members(id)
                )
            """)

            # Unordered pair is normalized into (pair_low, pair_high) at write time
            conn.execute("""
                CREATE UNIQUE INDEX IF NOT EXISTS idx_union_live_pair
                ON unions(pair_low, pair_high) WHERE status != 'Deceased'
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_member_gender ON members(gender)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_member_first_name ON members(first_name)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_member_spouse ON members(spouse_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_union_husband ON unions(husband_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_union_wife ON unions(wife_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_union_verification ON unions(verification_status)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_union_type ON unions(union_type)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_marriage_husband ON marriages(husband_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_marriage_wife ON marriages(wife_id)")

    # =========================================================================
    # MEMBER OPERATIONS
    # =========================================================================

    def add_member(self, member: Member) -> str:
        """
        Insert a member document.

        Returns: ID of created member
        """
        links = member.lineage_links
        try:
            with self._connection() as conn:
                conn.execute("""
                    INSERT INTO members (
                        id, first_name, middle_name, last_name, full_name,
                        gender, marital_status,
                        current_union_id, parental_union_id, family_lineage_links,
                        spouse_id, state, district, city, village,
                        state_name, district_name, taluka_name, village_name,
                        created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    member.id, member.first_name, member.middle_name, member.last_name,
                    member.full_name,
                    _enum_value(member.gender), _enum_value(member.marital_status),
                    links.current_union_id, links.parental_union_id,
                    links.family_lineage_links.model_dump_json(),
                    member.spouse_id, member.state, member.district, member.city, member.village,
                    member.state_name, member.district_name, member.taluka_name, member.village_name,
                    _iso(member.created_at), _iso(member.updated_at)
                ))
        except sqlite3.IntegrityError as e:
            raise ValidationError(f"Cannot insert member {member.id}: {e}") from e
        return member.id

    def get_member(self, member_id: str) -> Optional[Member]:
        """Get member by ID."""
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM members WHERE id = ?", (member_id,)).fetchone()
            return self._row_to_member(row) if row else None

    def get_members(self, member_ids: Iterable[str]) -> dict[str, Member]:
        """Fetch many members at once, keyed by id. Unknown ids are absent."""
        ids = list(dict.fromkeys(i for i in member_ids if i))
        if not ids:
            return {}
        placeholders = ", ".join("?" for _ in ids)
        with self._connection() as conn:
            rows = conn.execute(
                f"SELECT * FROM members WHERE id IN ({placeholders})", ids
            ).fetchall()
            return {row["id"]: self._row_to_member(row) for row in rows}

    def all_members(self) -> List[Member]:
        with self._connection() as conn:
            rows = conn.execute("SELECT * FROM members ORDER BY created_at, id").fetchall()
            return [self._row_to_member(row) for row in rows]

    def members_with_legacy_spouse(self) -> List[Member]:
        """Members whose legacy spouse reference is set."""
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM members WHERE spouse_id IS NOT NULL AND spouse_id != '' "
                "ORDER BY created_at, id"
            ).fetchall()
            return [self._row_to_member(row) for row in rows]

    def find_members(
        self,
        gender: str = None,
        exclude_id: str = None,
        marital_statuses: Iterable[str] = None,
        limit: int = 200
    ) -> List[Member]:
        """
        Query members with filters, ordered by first name.

        Args:
            gender: Exact match on gender
            exclude_id: Member id to leave out
            marital_statuses: Allowed marital statuses (None means any)
            limit: Maximum rows returned
        """
        conditions = []
        params = []

        if gender:
            conditions.append("gender = ?")
            params.append(_enum_value(gender))

        if exclude_id:
            conditions.append("id != ?")
            params.append(exclude_id)

        if marital_statuses is not None:
            statuses = [_enum_value(s) for s in marital_statuses]
            conditions.append(f"marital_status IN ({', '.join('?' for _ in statuses)})")
            params.extend(statuses)

        where_clause = " AND ".join(conditions) if conditions else "1=1"
        params.append(limit)

        with self._connection() as conn:
            rows = conn.execute(
                f"SELECT * FROM members WHERE {where_clause} "
                f"ORDER BY first_name, last_name, id LIMIT ?",
                params
            ).fetchall()
            return [self._row_to_member(row) for row in rows]

    def update_member(self, member_id: str, **kwargs) -> bool:
        """
        Update member fields.

        Args:
            member_id: ID of member to update
            **kwargs: Fields to update (e.g., current_union_id="UNION_0001")

        Returns: True if updated
        """
        if not kwargs:
            return False

        unknown = set(kwargs) - set(MEMBER_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown member fields: {sorted(unknown)}")

        values = {k: _enum_value(v) for k, v in kwargs.items()}
        values["updated_at"] = datetime.now().isoformat()
        set_clause = ", ".join(f"{k} = ?" for k in values)

        try:
            with self._connection() as conn:
                cursor = conn.execute(
                    f"UPDATE members SET {set_clause} WHERE id = ?",
                    list(values.values()) + [member_id]
                )
                return cursor.rowcount > 0
        except sqlite3.IntegrityError as e:
            raise ValidationError(f"Cannot update member {member_id}: {e}") from e

    def save_lineage_links(self, member_id: str, links: FamilyLineageLinks) -> bool:
        """Overwrite the cached relation tree of a member."""
        with self._connection() as conn:
            cursor = conn.execute(
                "UPDATE members SET family_lineage_links = ? WHERE id = ?",
                (links.model_dump_json(), member_id)
            )
            return cursor.rowcount > 0

    # =========================================================================
    # UNION OPERATIONS
    # =========================================================================

    def count_unions(self) -> int:
        with self._connection() as conn:
            return conn.execute("SELECT COUNT(*) FROM unions").fetchone()[0]

    def insert_union(self, build: Callable[[int], Union]) -> Union:
        """
        Allocate the next sequence number and insert a union atomically.

        The pair check, the count read and the insert share one write
        transaction. build(sequence) returns the document to store; if its
        union_id collides with an existing row the next sequence is tried.

        Raises:
            DuplicateUnion: the unordered pair already has a live union
        """
        with self._connection(immediate=True) as conn:
            sequence = conn.execute("SELECT COUNT(*) FROM unions").fetchone()[0] + 1

            for _ in range(MAX_ID_ATTEMPTS):
                union = build(sequence)
                low, high = union.pair_key
                existing = conn.execute(
                    "SELECT union_id FROM unions WHERE pair_low = ? AND pair_high = ? "
                    "AND status != 'Deceased'",
                    (low, high)
                ).fetchone()
                if existing:
                    raise DuplicateUnion(
                        f"Members {union.husband_id} and {union.wife_id} already "
                        f"share union {existing['union_id']}"
                    )

                try:
                    self._insert_union_row(conn, union)
                    return union
                except sqlite3.IntegrityError as e:
                    message = str(e)
                    if "unions.union_id" in message:
                        logger.warning(f"Union id {union.union_id} already taken, retrying")
                        sequence += 1
                        continue
                    if "pair_low" in message:
                        raise DuplicateUnion(
                            f"Members {union.husband_id} and {union.wife_id} already share a union"
                        ) from e
                    raise ValidationError(f"Cannot insert union {union.union_id}: {e}") from e

        raise ValidationError(f"Could not allocate a free union id after {MAX_ID_ATTEMPTS} attempts")

    def _insert_union_row(self, conn, union: Union):
        low, high = union.pair_key
        v = union.verification
        conn.execute("""
            INSERT INTO unions (
                union_id, husband_id, wife_id, pair_low, pair_high,
                marriage_date, marriage_place, union_type, children_ids, status,
                is_verified, verification_status, verified_by, verified_at, rejection_reason,
                created_at, updated_at, created_by
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            union.union_id, union.husband_id, union.wife_id, low, high,
            _iso(union.marriage_date), union.marriage_place,
            _enum_value(union.union_type), json.dumps(union.children_ids),
            _enum_value(union.status),
            int(v.is_verified), _enum_value(v.status), v.verified_by,
            _iso(v.verified_at), v.rejection_reason,
            _iso(union.meta_data.created_at), _iso(union.meta_data.updated_at),
            union.meta_data.created_by
        ))

    def save_union(self, union: Union) -> Union:
        """Write back a modified union document (children, status, verification)."""
        union = validate_document(Union, union.model_dump())
        union.meta_data.updated_at = datetime.now()
        v = union.verification

        try:
            with self._connection() as conn:
                cursor = conn.execute("""
                    UPDATE unions SET
                        marriage_date = ?, marriage_place = ?, union_type = ?,
                        children_ids = ?, status = ?,
                        is_verified = ?, verification_status = ?, verified_by = ?,
                        verified_at = ?, rejection_reason = ?,
                        updated_at = ?
                    WHERE union_id = ?
                """, (
                    _iso(union.marriage_date), union.marriage_place,
                    _enum_value(union.union_type), json.dumps(union.children_ids),
                    _enum_value(union.status),
                    int(v.is_verified), _enum_value(v.status), v.verified_by,
                    _iso(v.verified_at), v.rejection_reason,
                    _iso(union.meta_data.updated_at),
                    union.union_id
                ))
        except sqlite3.IntegrityError as e:
            if "pair_low" in str(e):
                raise DuplicateUnion(
                    f"Members {union.husband_id} and {union.wife_id} already share a live union"
                ) from e
            raise ValidationError(f"Cannot save union {union.union_id}: {e}") from e

        if cursor.rowcount == 0:
            raise ValidationError(f"Union {union.union_id} is not stored")
        return union

    def finalize_verification(self, union: Union) -> bool:
        """
        Write the verification block only if the stored union is still Pending.

        Returns: False when another caller finalized it first
        """
        v = union.verification
        with self._connection() as conn:
            cursor = conn.execute("""
                UPDATE unions SET
                    is_verified = ?, verification_status = ?, verified_by = ?,
                    verified_at = ?, rejection_reason = ?, updated_at = ?
                WHERE union_id = ? AND verification_status = ?
            """, (
                int(v.is_verified), _enum_value(v.status), v.verified_by,
                _iso(v.verified_at), v.rejection_reason, datetime.now().isoformat(),
                union.union_id, VerificationStatus.PENDING.value
            ))
            return cursor.rowcount > 0

    def append_child(self, union_id: str, child_id: str) -> Optional[Union]:
        """
        Add a child to a union's children in one write transaction.

        Returns: The updated union, or None if the union does not exist

        Raises:
            ValidationError: the child already belongs to another live union
        """
        with self._connection(immediate=True) as conn:
            row = conn.execute("SELECT * FROM unions WHERE union_id = ?", (union_id,)).fetchone()
            if not row:
                return None

            other = conn.execute("""
                SELECT union_id FROM unions
                WHERE union_id != ? AND status != 'Deceased'
                  AND EXISTS (SELECT 1 FROM json_each(unions.children_ids) WHERE value = ?)
            """, (union_id, child_id)).fetchone()
            if other:
                raise ValidationError(
                    f"Member {child_id} is already a child of union {other['union_id']}"
                )

            union = self._row_to_union(row)
            if child_id in union.children_ids:
                return union

            data = union.model_dump()
            data["children_ids"] = [*union.children_ids, child_id]
            union = validate_document(Union, data)
            union.meta_data.updated_at = datetime.now()
            conn.execute(
                "UPDATE unions SET children_ids = ?, updated_at = ? WHERE union_id = ?",
                (json.dumps(union.children_ids), _iso(union.meta_data.updated_at), union_id)
            )
            return union

    def find_parental_unions(self, child_ids: Iterable[str]) -> dict[str, str]:
        """Live union id per child, for children already listed in one."""
        ids = list(dict.fromkeys(i for i in child_ids if i))
        if not ids:
            return {}
        placeholders = ", ".join("?" for _ in ids)
        with self._connection() as conn:
            rows = conn.execute(f"""
                SELECT j.value AS child_id, unions.union_id
                FROM unions, json_each(unions.children_ids) AS j
                WHERE unions.status != 'Deceased' AND j.value IN ({placeholders})
            """, ids).fetchall()
            return {row["child_id"]: row["union_id"] for row in rows}

    def get_union(self, union_id: str) -> Optional[Union]:
        """Get union by union_id."""
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM unions WHERE union_id = ?", (union_id,)).fetchone()
            return self._row_to_union(row) if row else None

    def find_live_union_for_pair(self, member_a: str, member_b: str) -> Optional[Union]:
        """Non-Deceased union for the unordered pair, if any."""
        low, high = sorted((member_a, member_b))
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM unions WHERE pair_low = ? AND pair_high = ? AND status != 'Deceased'",
                (low, high)
            ).fetchone()
            return self._row_to_union(row) if row else None

    def find_unions(
        self,
        member_id: str = None,
        verification_status: VerificationStatus = None,
        newest_first: bool = False
    ) -> List[Union]:
        """
        Search unions.

        Args:
            member_id: Member appearing as husband, wife or child
            verification_status: Exact match on verification status
            newest_first: Sort by creation time descending
        """
        conditions = []
        params = []

        if member_id:
            conditions.append("""
                (husband_id = ? OR wife_id = ? OR
                 EXISTS (SELECT 1 FROM json_each(unions.children_ids) WHERE value = ?))
            """)
            params.extend([member_id] * 3)

        if verification_status:
            conditions.append("verification_status = ?")
            params.append(_enum_value(verification_status))

        where_clause = " AND ".join(conditions) if conditions else "1=1"
        order = "DESC" if newest_first else "ASC"

        with self._connection() as conn:
            rows = conn.execute(
                f"SELECT * FROM unions WHERE {where_clause} ORDER BY created_at {order}, union_id {order}",
                params
            ).fetchall()
            return [self._row_to_union(row) for row in rows]

    def all_unions(self) -> List[Union]:
        return self.find_unions()

    # =========================================================================
    # MARRIAGE OPERATIONS
    # =========================================================================

    def find_marriage(self, member_a: str, member_b: str) -> Optional[Marriage]:
        """Marriage between two members in either husband/wife ordering."""
        with self._connection() as conn:
            row = conn.execute("""
                SELECT * FROM marriages
                WHERE (husband_id = ? AND wife_id = ?) OR (husband_id = ? AND wife_id = ?)
            """, (member_a, member_b, member_b, member_a)).fetchone()
            return self._row_to_marriage(row) if row else None

    def insert_marriage(self, marriage: Marriage) -> int:
        """
        Insert a marriage record.

        Returns: ID of created marriage
        """
        try:
            with self._connection() as conn:
                cursor = conn.execute("""
                    INSERT INTO marriages (husband_id, wife_id, marriage_date, status, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                """, (
                    marriage.husband_id, marriage.wife_id, _iso(marriage.marriage_date),
                    _enum_value(marriage.status),
                    _iso(marriage.created_at), _iso(marriage.updated_at)
                ))
                return cursor.lastrowid
        except sqlite3.IntegrityError as e:
            if "UNIQUE" in str(e):
                raise DuplicateMarriage(
                    f"Marriage {marriage.husband_id} -> {marriage.wife_id} already exists"
                ) from e
            raise ValidationError(f"Cannot insert marriage: {e}") from e

    def all_marriages(self) -> List[Marriage]:
        with self._connection() as conn:
            rows = conn.execute("SELECT * FROM marriages ORDER BY id").fetchall()
            return [self._row_to_marriage(row) for row in rows]

    # =========================================================================
    # ROW CONVERSION
    # =========================================================================

    def _row_to_member(self, row) -> Member:
        """Convert database row to Member object."""
        cached = row["family_lineage_links"]
        return Member(
            id=row["id"],
            first_name=row["first_name"],
            middle_name=row["middle_name"] or "",
            last_name=row["last_name"] or "",
            full_name=row["full_name"] or "",
            gender=row["gender"],
            marital_status=row["marital_status"],
            lineage_links=LineageLinks(
                current_union_id=row["current_union_id"],
                parental_union_id=row["parental_union_id"],
                family_lineage_links=(
                    FamilyLineageLinks.model_validate_json(cached) if cached
                    else FamilyLineageLinks()
                )
            ),
            spouse_id=row["spouse_id"],
            state=row["state"],
            district=row["district"],
            city=row["city"],
            village=row["village"],
            state_name=row["state_name"],
            district_name=row["district_name"],
            taluka_name=row["taluka_name"],
            village_name=row["village_name"],
            created_at=row["created_at"] or datetime.now(),
            updated_at=row["updated_at"] or datetime.now()
        )

    def _row_to_union(self, row) -> Union:
        """Convert database row to Union object."""
        return Union(
            union_id=row["union_id"],
            husband_id=row["husband_id"],
            wife_id=row["wife_id"],
            marriage_date=row["marriage_date"],
            marriage_place=row["marriage_place"],
            union_type=row["union_type"],
            children_ids=json.loads(row["children_ids"] or "[]"),
            status=row["status"],
            verification={
                "is_verified": bool(row["is_verified"]),
                "status": row["verification_status"],
                "verified_by": row["verified_by"],
                "verified_at": row["verified_at"],
                "rejection_reason": row["rejection_reason"],
            },
            meta_data={
                "created_at": row["created_at"],
                "updated_at": row["updated_at"],
                "created_by": row["created_by"],
            }
        )

    def _row_to_marriage(self, row) -> Marriage:
        """Convert database row to Marriage object."""
        return Marriage(
            id=row["id"],
            husband_id=row["husband_id"],
            wife_id=row["wife_id"],
            marriage_date=row["marriage_date"],
            status=row["status"],
            created_at=row["created_at"],
            updated_at=row["updated_at"]
        )
