"""
Benefit Service Data Repository

Data access layer - PostgreSQL (asyncpg)
"""

import functools
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

import asyncpg

from core.config import InfraConfig
from core.postgres_client import PostgresClientWrapper

from .models import (
    AccessMode,
    AssociationProfile,
    Benefit,
    BenefitState,
    BusinessProfile,
    FixedAmountDiscount,
    FreeItemDiscount,
    MemberProfile,
    PercentageDiscount,
    ProfileState,
    Redemption,
    RedemptionState,
)
from .protocols import (
    MAX_IN_FILTER_VALUES,
    BenefitExpiredError,
    BenefitNotFoundError,
    BenefitStorageError,
    BenefitUnavailableError,
    GlobalCapReachedError,
    MemberCapReachedError,
)

logger = logging.getLogger(__name__)

SUCCESSFUL_REDEMPTION_STATES = [RedemptionState.USED.value, RedemptionState.VALIDATED.value]

SCHEMA_SQL = """
CREATE SCHEMA IF NOT EXISTS {schema};

CREATE TABLE IF NOT EXISTS {schema}.benefits (
    benefit_id        TEXT PRIMARY KEY,
    title             TEXT NOT NULL,
    description       TEXT NOT NULL DEFAULT '',
    discount_kind     TEXT NOT NULL,
    discount_value    NUMERIC(12, 2),
    category          TEXT NOT NULL,
    start_at          TIMESTAMPTZ NOT NULL,
    end_at            TIMESTAMPTZ NOT NULL,
    state             TEXT NOT NULL DEFAULT 'active',
    access_mode       TEXT NOT NULL DEFAULT 'public',
    business_id       TEXT NOT NULL,
    business_name     TEXT,
    business_logo     TEXT,
    association_ids   TEXT[] NOT NULL DEFAULT '{{}}',
    per_member_cap    INTEGER,
    global_cap        INTEGER,
    redemption_count  INTEGER NOT NULL DEFAULT 0,
    conditions        TEXT,
    tags              TEXT[] NOT NULL DEFAULT '{{}}',
    featured          BOOLEAN NOT NULL DEFAULT FALSE,
    image_url         TEXT,
    created_by        TEXT,
    created_at        TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at        TIMESTAMPTZ,
    CHECK (global_cap IS NULL OR redemption_count <= global_cap)
);
CREATE INDEX IF NOT EXISTS idx_benefits_business ON {schema}.benefits (business_id, state);
CREATE INDEX IF NOT EXISTS idx_benefits_access ON {schema}.benefits (state, access_mode, created_at DESC);
CREATE INDEX IF NOT EXISTS idx_benefits_associations ON {schema}.benefits USING GIN (association_ids);

CREATE TABLE IF NOT EXISTS {schema}.redemptions (
    redemption_id     TEXT PRIMARY KEY,
    benefit_id        TEXT NOT NULL REFERENCES {schema}.benefits (benefit_id),
    benefit_title     TEXT NOT NULL,
    member_id         TEXT NOT NULL,
    member_name       TEXT,
    member_email      TEXT,
    business_id       TEXT NOT NULL,
    business_name     TEXT,
    association_id    TEXT,
    association_name  TEXT,
    redeemed_at       TIMESTAMPTZ NOT NULL,
    discount_amount   NUMERIC(12, 2) NOT NULL DEFAULT 0,
    original_amount   NUMERIC(12, 2),
    final_amount      NUMERIC(12, 2),
    state             TEXT NOT NULL DEFAULT 'used'
);
CREATE INDEX IF NOT EXISTS idx_redemptions_member ON {schema}.redemptions (member_id, redeemed_at DESC);
CREATE INDEX IF NOT EXISTS idx_redemptions_benefit_member ON {schema}.redemptions (benefit_id, member_id);

CREATE TABLE IF NOT EXISTS {schema}.members (
    member_id                TEXT PRIMARY KEY,
    name                     TEXT,
    email                    TEXT,
    association_id           TEXT,
    affiliated_business_ids  TEXT[] NOT NULL DEFAULT '{{}}',
    state                    TEXT NOT NULL DEFAULT 'active'
);

CREATE TABLE IF NOT EXISTS {schema}.businesses (
    business_id             TEXT PRIMARY KEY,
    name                    TEXT NOT NULL,
    logo_url                TEXT,
    linked_association_ids  TEXT[] NOT NULL DEFAULT '{{}}',
    state                   TEXT NOT NULL DEFAULT 'active',
    active_benefit_count    INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS {schema}.associations (
    association_id  TEXT PRIMARY KEY,
    name            TEXT NOT NULL,
    state           TEXT NOT NULL DEFAULT 'active'
);
"""

# Columns update_benefit may touch
_UPDATABLE_COLUMNS = {
    "title", "description", "category", "start_at", "end_at", "state", "access_mode",
    "business_id", "business_name", "business_logo", "association_ids", "per_member_cap",
    "global_cap", "conditions", "tags", "featured", "image_url", "updated_at",
}


def _storage_errors(operation: str):
    """Translate driver failures into BenefitStorageError"""
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
                logger.error(f"Error in {operation}: {e}")
                raise BenefitStorageError(f"{operation} failed: {e}", operation=operation) from e
        return wrapper
    return decorator


class BenefitRepository:
    """Benefit service data repository - PostgreSQL (Async)"""

    def __init__(self, config: Optional[InfraConfig] = None, db: Optional[PostgresClientWrapper] = None):
        config = config or InfraConfig.from_env()
        self.db = db or PostgresClientWrapper("benefit_service", config=config)
        self.schema = config.postgres_schema
        self.benefits_table = f"{self.schema}.benefits"
        self.redemptions_table = f"{self.schema}.redemptions"
        self.members_table = f"{self.schema}.members"
        self.businesses_table = f"{self.schema}.businesses"
        self.associations_table = f"{self.schema}.associations"

    @_storage_errors("initialize")
    async def initialize(self):
        """Open the pool and make sure the schema exists"""
        await self.db.connect()
        await self.db.execute(SCHEMA_SQL.format(schema=self.schema))
        logger.info("Benefit repository initialized with PostgreSQL")

    async def close(self):
        """Close database connection"""
        await self.db.close()
        logger.info("Benefit repository database connection closed")

    # ====================
    # Benefit reads
    # ====================

    @_storage_errors("get_benefit")
    async def get_benefit(self, benefit_id: str) -> Optional[Benefit]:
        row = await self.db.query_row(
            f"SELECT * FROM {self.benefits_table} WHERE benefit_id = $1", [benefit_id]
        )
        return self._row_to_benefit(row) if row else None

    @_storage_errors("list_active_benefits_by_association")
    async def list_active_benefits_by_association(
        self,
        association_id: str,
        limit: Optional[int] = None,
    ) -> List[Benefit]:
        rows = await self.db.query(
            f'''
                SELECT * FROM {self.benefits_table}
                WHERE state = 'active' AND $1 = ANY(association_ids)
                ORDER BY created_at DESC
                LIMIT $2
            ''',
            [association_id, limit],
        )
        return [self._row_to_benefit(r) for r in rows]

    @_storage_errors("list_active_benefits_by_businesses")
    async def list_active_benefits_by_businesses(
        self,
        business_ids: Sequence[str],
        access_modes: Optional[Sequence[AccessMode]] = None,
    ) -> List[Benefit]:
        if len(business_ids) > MAX_IN_FILTER_VALUES:
            raise ValueError(f"At most {MAX_IN_FILTER_VALUES} business ids per query, got {len(business_ids)}")
        if not business_ids:
            return []
        modes = [m.value for m in access_modes] if access_modes else None
        rows = await self.db.query(
            f'''
                SELECT * FROM {self.benefits_table}
                WHERE state = 'active'
                  AND business_id = ANY($1::text[])
                  AND ($2::text[] IS NULL OR access_mode = ANY($2::text[]))
                ORDER BY created_at DESC
            ''',
            [list(business_ids), modes],
        )
        return [self._row_to_benefit(r) for r in rows]

    @_storage_errors("list_active_benefits_by_access")
    async def list_active_benefits_by_access(
        self,
        access_modes: Sequence[AccessMode],
        limit: Optional[int] = None,
    ) -> List[Benefit]:
        rows = await self.db.query(
            f'''
                SELECT * FROM {self.benefits_table}
                WHERE state = 'active' AND access_mode = ANY($1::text[])
                ORDER BY created_at DESC
                LIMIT $2
            ''',
            [[m.value for m in access_modes], limit],
        )
        return [self._row_to_benefit(r) for r in rows]

    @_storage_errors("list_benefits")
    async def list_benefits(
        self,
        business_id: Optional[str] = None,
        association_id: Optional[str] = None,
        state: Optional[BenefitState] = None,
        limit: Optional[int] = None,
    ) -> List[Benefit]:
        conditions = []
        params: List[Any] = []
        if business_id:
            params.append(business_id)
            conditions.append(f"business_id = ${len(params)}")
        if association_id:
            params.append(association_id)
            conditions.append(f"${len(params)} = ANY(association_ids)")
        if state:
            params.append(state.value)
            conditions.append(f"state = ${len(params)}")
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        params.append(limit)
        rows = await self.db.query(
            f"SELECT * FROM {self.benefits_table} {where} ORDER BY created_at DESC LIMIT ${len(params)}",
            params,
        )
        return [self._row_to_benefit(r) for r in rows]

    @_storage_errors("list_expired_active_benefits")
    async def list_expired_active_benefits(self, now: datetime) -> List[Benefit]:
        rows = await self.db.query(
            f"SELECT * FROM {self.benefits_table} WHERE state = 'active' AND end_at <= $1",
            [now],
        )
        return [self._row_to_benefit(r) for r in rows]

    @_storage_errors("list_categories")
    async def list_categories(self) -> List[str]:
        rows = await self.db.query(
            f"SELECT DISTINCT category FROM {self.benefits_table} ORDER BY category"
        )
        return [r["category"] for r in rows]

    # ====================
    # Benefit writes
    # ====================

    @_storage_errors("create_benefit")
    async def create_benefit(self, benefit: Benefit) -> Benefit:
        kind, value = self._discount_columns(benefit)
        row = await self.db.query_row(
            f'''
                INSERT INTO {self.benefits_table} (
                    benefit_id, title, description, discount_kind, discount_value, category,
                    start_at, end_at, state, access_mode, business_id, business_name, business_logo,
                    association_ids, per_member_cap, global_cap, redemption_count, conditions, tags,
                    featured, image_url, created_by, created_at, updated_at
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16,
                          $17, $18, $19, $20, $21, $22, $23, $24)
                RETURNING *
            ''',
            [
                benefit.benefit_id, benefit.title, benefit.description, kind, value, benefit.category,
                benefit.start_at, benefit.end_at, benefit.state.value, benefit.access_mode.value,
                benefit.business_id, benefit.business_name, benefit.business_logo,
                list(benefit.association_ids), benefit.per_member_cap, benefit.global_cap,
                benefit.redemption_count, benefit.conditions, list(benefit.tags), benefit.featured,
                benefit.image_url, benefit.created_by, benefit.created_at, benefit.updated_at,
            ],
        )
        return self._row_to_benefit(row)

    @_storage_errors("update_benefit")
    async def update_benefit(self, benefit_id: str, changes: Dict[str, Any]) -> Optional[Benefit]:
        assignments = []
        params: List[Any] = []
        for column, value in changes.items():
            if column == "discount":
                kind, amount = self._discount_columns_for(value)
                params.extend([kind, amount])
                assignments.append(f"discount_kind = ${len(params) - 1}")
                assignments.append(f"discount_value = ${len(params)}")
                continue
            if column not in _UPDATABLE_COLUMNS:
                raise ValueError(f"Column cannot be updated: {column}")
            if hasattr(value, "value"):
                value = value.value
            params.append(value)
            assignments.append(f"{column} = ${len(params)}")
        if not assignments:
            return await self.get_benefit(benefit_id)

        params.append(benefit_id)
        row = await self.db.query_row(
            f"UPDATE {self.benefits_table} SET {', '.join(assignments)} "
            f"WHERE benefit_id = ${len(params)} RETURNING *",
            params,
        )
        return self._row_to_benefit(row) if row else None

    # ====================
    # Counters
    # ====================

    @_storage_errors("count_active_benefits")
    async def count_active_benefits(self, business_id: str) -> int:
        count = await self.db.query_value(
            f"SELECT COUNT(*) FROM {self.benefits_table} WHERE business_id = $1 AND state = 'active'",
            [business_id],
        )
        return int(count or 0)

    @_storage_errors("set_business_active_count")
    async def set_business_active_count(self, business_id: str, count: int) -> None:
        await self.db.execute(
            f"UPDATE {self.businesses_table} SET active_benefit_count = $1 WHERE business_id = $2",
            [count, business_id],
        )

    @_storage_errors("list_business_ids")
    async def list_business_ids(self) -> List[str]:
        rows = await self.db.query(f"SELECT business_id FROM {self.businesses_table} ORDER BY business_id")
        return [r["business_id"] for r in rows]

    # ====================
    # Profiles
    # ====================

    @_storage_errors("get_member_profile")
    async def get_member_profile(self, member_id: str) -> Optional[MemberProfile]:
        row = await self.db.query_row(
            f"SELECT * FROM {self.members_table} WHERE member_id = $1", [member_id]
        )
        if not row:
            return None
        return MemberProfile(
            member_id=row["member_id"],
            name=row.get("name"),
            email=row.get("email"),
            association_id=row.get("association_id"),
            affiliated_business_ids=list(row.get("affiliated_business_ids") or []),
            state=ProfileState(row.get("state") or "active"),
        )

    @_storage_errors("get_business_profile")
    async def get_business_profile(self, business_id: str) -> Optional[BusinessProfile]:
        row = await self.db.query_row(
            f"SELECT * FROM {self.businesses_table} WHERE business_id = $1", [business_id]
        )
        return self._row_to_business(row) if row else None

    @_storage_errors("get_association_profile")
    async def get_association_profile(self, association_id: str) -> Optional[AssociationProfile]:
        row = await self.db.query_row(
            f"SELECT * FROM {self.associations_table} WHERE association_id = $1", [association_id]
        )
        if not row:
            return None
        return AssociationProfile(
            association_id=row["association_id"],
            name=row["name"],
            state=ProfileState(row.get("state") or "active"),
        )

    @_storage_errors("list_businesses_linked_to_association")
    async def list_businesses_linked_to_association(
        self,
        association_id: str,
        active_only: bool = True,
    ) -> List[BusinessProfile]:
        rows = await self.db.query(
            f'''
                SELECT * FROM {self.businesses_table}
                WHERE $1 = ANY(linked_association_ids)
                  AND (NOT $2 OR state = 'active')
            ''',
            [association_id, active_only],
        )
        return [self._row_to_business(r) for r in rows]

    # ====================
    # Redemptions
    # ====================

    @_storage_errors("count_member_redemptions")
    async def count_member_redemptions(self, benefit_id: str, member_id: str) -> int:
        count = await self.db.query_value(
            f'''
                SELECT COUNT(*) FROM {self.redemptions_table}
                WHERE benefit_id = $1 AND member_id = $2 AND state = ANY($3::text[])
            ''',
            [benefit_id, member_id, SUCCESSFUL_REDEMPTION_STATES],
        )
        return int(count or 0)

    @_storage_errors("commit_redemption")
    async def commit_redemption(self, redemption: Redemption) -> Benefit:
        """Insert the redemption and bump the counter under a row lock"""
        async with self.db.transaction() as conn:
            row = await conn.fetchrow(
                f"SELECT * FROM {self.benefits_table} WHERE benefit_id = $1 FOR UPDATE",
                redemption.benefit_id,
            )
            if row is None:
                raise BenefitNotFoundError(redemption.benefit_id)

            state = row["state"]
            global_cap = row["global_cap"]
            count = row["redemption_count"]
            if state == BenefitState.EXHAUSTED.value or (global_cap is not None and count >= global_cap):
                raise GlobalCapReachedError(
                    f"Benefit {redemption.benefit_id} reached its limit of {global_cap} uses",
                    cap=global_cap, used=count,
                )
            if state == BenefitState.EXPIRED.value:
                raise BenefitExpiredError(f"Benefit {redemption.benefit_id} has expired")
            if state != BenefitState.ACTIVE.value:
                raise BenefitUnavailableError(f"Benefit {redemption.benefit_id} is not active", state=state)

            per_member_cap = row["per_member_cap"]
            if per_member_cap is not None:
                used = await conn.fetchval(
                    f'''
                        SELECT COUNT(*) FROM {self.redemptions_table}
                        WHERE benefit_id = $1 AND member_id = $2 AND state = ANY($3::text[])
                    ''',
                    redemption.benefit_id, redemption.member_id, SUCCESSFUL_REDEMPTION_STATES,
                )
                if used >= per_member_cap:
                    raise MemberCapReachedError(
                        f"Member {redemption.member_id} already used benefit {redemption.benefit_id} {used} times",
                        cap=per_member_cap, used=used,
                    )

            await conn.execute(
                f'''
                    INSERT INTO {self.redemptions_table} (
                        redemption_id, benefit_id, benefit_title, member_id, member_name, member_email,
                        business_id, business_name, association_id, association_name, redeemed_at,
                        discount_amount, original_amount, final_amount, state
                    ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15)
                ''',
                redemption.redemption_id, redemption.benefit_id, redemption.benefit_title,
                redemption.member_id, redemption.member_name, redemption.member_email,
                redemption.business_id, redemption.business_name, redemption.association_id,
                redemption.association_name, redemption.redeemed_at, redemption.discount_amount,
                redemption.original_amount, redemption.final_amount, redemption.state.value,
            )

            updated = await conn.fetchrow(
                f'''
                    UPDATE {self.benefits_table}
                    SET redemption_count = redemption_count + 1,
                        state = CASE
                            WHEN global_cap IS NOT NULL AND redemption_count + 1 >= global_cap THEN 'exhausted'
                            ELSE state
                        END,
                        updated_at = $2
                    WHERE benefit_id = $1
                    RETURNING *
                ''',
                redemption.benefit_id, datetime.now(timezone.utc),
            )
        return self._row_to_benefit(dict(updated))

    @_storage_errors("list_redemptions")
    async def list_redemptions(
        self,
        member_id: Optional[str] = None,
        business_id: Optional[str] = None,
        association_id: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[Redemption]:
        conditions = []
        params: List[Any] = []
        for column, op, value in (
            ("member_id", "=", member_id),
            ("business_id", "=", business_id),
            ("association_id", "=", association_id),
            ("redeemed_at", ">=", since),
            ("redeemed_at", "<=", until),
        ):
            if value is not None:
                params.append(value)
                conditions.append(f"{column} {op} ${len(params)}")
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        params.append(limit)
        rows = await self.db.query(
            f"SELECT * FROM {self.redemptions_table} {where} ORDER BY redeemed_at DESC LIMIT ${len(params)}",
            params,
        )
        return [self._row_to_redemption(r) for r in rows]

    # ====================
    # Row mapping
    # ====================

    @staticmethod
    def _discount_columns_for(discount) -> tuple:
        if isinstance(discount, PercentageDiscount):
            return discount.kind, discount.rate
        if isinstance(discount, FixedAmountDiscount):
            return discount.kind, discount.amount
        return discount.kind, None

    def _discount_columns(self, benefit: Benefit) -> tuple:
        return self._discount_columns_for(benefit.discount)

    @staticmethod
    def _row_to_discount(kind: str, value: Optional[Decimal]):
        if kind == "percentage":
            return PercentageDiscount(rate=value)
        if kind == "fixed_amount":
            return FixedAmountDiscount(amount=value)
        return FreeItemDiscount()

    def _row_to_benefit(self, row: Dict[str, Any]) -> Benefit:
        return Benefit(
            benefit_id=row["benefit_id"],
            title=row["title"],
            description=row.get("description") or "",
            discount=self._row_to_discount(row["discount_kind"], row.get("discount_value")),
            category=row["category"],
            start_at=row["start_at"],
            end_at=row["end_at"],
            state=BenefitState(row["state"]),
            access_mode=AccessMode(row["access_mode"]),
            business_id=row["business_id"],
            business_name=row.get("business_name"),
            business_logo=row.get("business_logo"),
            association_ids=list(row.get("association_ids") or []),
            per_member_cap=row.get("per_member_cap"),
            global_cap=row.get("global_cap"),
            redemption_count=row.get("redemption_count") or 0,
            conditions=row.get("conditions"),
            tags=list(row.get("tags") or []),
            featured=bool(row.get("featured")),
            image_url=row.get("image_url"),
            created_by=row.get("created_by"),
            created_at=row["created_at"],
            updated_at=row.get("updated_at"),
        )

    @staticmethod
    def _row_to_business(row: Dict[str, Any]) -> BusinessProfile:
        return BusinessProfile(
            business_id=row["business_id"],
            name=row["name"],
            logo_url=row.get("logo_url"),
            linked_association_ids=list(row.get("linked_association_ids") or []),
            state=ProfileState(row.get("state") or "active"),
            active_benefit_count=row.get("active_benefit_count") or 0,
        )

    @staticmethod
    def _row_to_redemption(row: Dict[str, Any]) -> Redemption:
        return Redemption(
            redemption_id=row["redemption_id"],
            benefit_id=row["benefit_id"],
            benefit_title=row["benefit_title"],
            member_id=row["member_id"],
            member_name=row.get("member_name"),
            member_email=row.get("member_email"),
            business_id=row["business_id"],
            business_name=row.get("business_name"),
            association_id=row.get("association_id"),
            association_name=row.get("association_name"),
            redeemed_at=row["redeemed_at"],
            discount_amount=row.get("discount_amount") or Decimal("0.00"),
            original_amount=row.get("original_amount"),
            final_amount=row.get("final_amount"),
            state=RedemptionState(row.get("state") or "used"),
        )
