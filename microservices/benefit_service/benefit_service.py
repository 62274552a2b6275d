"""
Benefit Service Business Logic

Exposed interface of the benefit eligibility and redemption engine:
member-facing listings, redemption, statistics, subscriptions,
benefit lifecycle management and maintenance jobs.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional

from core.config import BenefitConfig

from .affiliation import AffiliationResolver
from .cache import TTLCache
from .catalog import BenefitCatalogReader
from .counters import CounterSynchronizer
from .eligibility import apply_eligibility, filter_benefits, is_capped
from .events.publishers import (
    publish_benefit_created,
    publish_benefit_expired,
    publish_benefit_updated,
)
from .models import (
    AccessMode,
    ActorRole,
    AvailableAssociation,
    Benefit,
    BenefitDraft,
    BenefitFilter,
    BenefitState,
    BenefitUpdate,
    CatalogEntry,
    CounterResyncResponse,
    ExpirySweepResponse,
    MemberIdentity,
    Redemption,
    StatsScope,
    StatsSummary,
)
from .protocols import (
    BenefitNotFoundError,
    BenefitRepositoryProtocol,
    BenefitServiceError,
    BenefitValidationError,
    BusinessNotFoundError,
    EventBusProtocol,
)
from .redemption import RedemptionTransactor
from .statistics import aggregate_stats
from .subscriptions import BenefitCallback, BenefitChangeNotifier, Subscription

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _positive_or_none(value: Optional[int]) -> Optional[int]:
    return value if value is not None and value > 0 else None


class BenefitService:
    """Benefit service core business logic"""

    def __init__(
        self,
        repository: BenefitRepositoryProtocol,
        event_bus: Optional[EventBusProtocol] = None,
        config: Optional[BenefitConfig] = None,
        cache: Optional[TTLCache] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """
        Initialize benefit service with injected dependencies

        Args:
            repository: Repository for data access
            event_bus: Optional event bus for publishing events
            config: Engine tunables (defaults if not provided)
            cache: Read-through cache (built from config if not provided)
            clock: Source of "now", injectable for tests
        """
        self.repository = repository
        self.event_bus = event_bus
        self.config = config or BenefitConfig()
        self.cache = cache or TTLCache(
            ttl_seconds=self.config.cache_ttl_seconds,
            max_entries=self.config.cache_max_entries,
        )
        self._clock = clock

        self.affiliation_resolver = AffiliationResolver(repository, self.cache)
        self.catalog = BenefitCatalogReader(
            repository,
            public_limit=self.config.public_benefit_limit,
            batch_size=self.config.in_filter_batch_size,
        )
        self.counters = CounterSynchronizer(repository)
        self.transactor = RedemptionTransactor(
            repository,
            self.affiliation_resolver,
            self.counters,
            cache=self.cache,
            event_bus=event_bus,
            clock=clock,
        )
        self.notifier = BenefitChangeNotifier()

        logger.info("BenefitService initialized with dependency injection")

    async def initialize(self):
        """Initialize service"""
        await self.repository.initialize()
        logger.info("BenefitService initialized")

    async def close(self):
        """Stop push deliveries and release the repository"""
        self.notifier.cancel_all()
        await self.repository.close()

    # ====================
    # Member-facing listings
    # ====================

    async def list_available_entries(
        self,
        member_id: str,
        association_id: Optional[str] = None,
        benefit_filter: Optional[BenefitFilter] = None,
        limit: Optional[int] = None,
    ) -> List[CatalogEntry]:
        """
        Benefits a member may currently use, tagged with their catalog origin.

        Read-through cached. Source failures shrink the list instead of raising.
        """
        limit = limit if limit is not None else self.config.default_list_limit
        key = TTLCache.make_key(
            "available",
            member_id=member_id,
            association_id=association_id,
            filter=benefit_filter.model_dump(mode="json") if benefit_filter else None,
            limit=limit,
        )
        cached = self.cache.get(key)
        if cached is not None:
            return list(cached)

        affiliation = await self.affiliation_resolver.resolve(member_id, association_id)
        candidates = await self.catalog.read(affiliation)
        entries = apply_eligibility(
            candidates,
            benefit_filter,
            self._clock(),
            limit=limit,
            new_window=timedelta(days=self.config.new_window_days),
            expiring_window=timedelta(days=self.config.expiring_window_days),
        )

        if not affiliation.degraded:
            self.cache.set(key, tuple(entries))
        return entries

    async def list_available_benefits(
        self,
        member_id: str,
        association_id: Optional[str] = None,
        benefit_filter: Optional[BenefitFilter] = None,
        limit: Optional[int] = None,
    ) -> List[Benefit]:
        """Benefits a member may currently use"""
        entries = await self.list_available_entries(member_id, association_id, benefit_filter, limit)
        return [entry.benefit for entry in entries]

    # ====================
    # Redemption
    # ====================

    async def redeem_benefit(
        self,
        benefit_id: str,
        member_id: str,
        identity: Optional[MemberIdentity],
        business_id: str,
        association_id: Optional[str] = None,
        original_amount: Optional[Decimal] = None,
    ) -> Redemption:
        """Redeem a benefit. Never served from cache."""
        redemption = await self.transactor.redeem(
            benefit_id=benefit_id,
            member_id=member_id,
            identity=identity,
            business_id=business_id,
            association_id=association_id,
            original_amount=original_amount,
        )
        await self.notifier.notify_changed()
        return redemption

    async def get_redemption_history(self, member_id: str, limit: Optional[int] = None) -> List[Redemption]:
        """A member's redemptions, newest first"""
        limit = limit or self.config.history_default_limit
        key = TTLCache.make_key("history", member_id=member_id, limit=limit)
        history = await self.cache.get_or_load(
            key, lambda: self.repository.list_redemptions(member_id=member_id, limit=limit)
        )
        return list(history)

    # ====================
    # Statistics
    # ====================

    async def get_stats(self, scope: Optional[StatsScope] = None) -> StatsSummary:
        """Reporting metrics for a business, association or member scope"""
        scope = scope or StatsScope()
        key = TTLCache.make_key("stats", **scope.model_dump(mode="json"))
        return await self.cache.get_or_load(key, lambda: self._compute_stats(scope))

    async def _compute_stats(self, scope: StatsScope) -> StatsSummary:
        redemptions = await self.repository.list_redemptions(
            member_id=scope.member_id,
            business_id=scope.business_id,
            association_id=scope.association_id,
            since=scope.start,
            until=scope.end,
        )
        if scope.member_id:
            # A member's benefits are the ones they redeemed
            benefits = []
            for benefit_id in dict.fromkeys(r.benefit_id for r in redemptions):
                benefit = await self.repository.get_benefit(benefit_id)
                if benefit is not None:
                    benefits.append(benefit)
        else:
            benefits = await self.repository.list_benefits(
                business_id=scope.business_id,
                association_id=scope.association_id,
            )
        return aggregate_stats(benefits, redemptions, self._clock())

    # ====================
    # Subscriptions
    # ====================

    async def subscribe(
        self,
        member_id: str,
        association_id: Optional[str],
        callback: BenefitCallback,
        benefit_filter: Optional[BenefitFilter] = None,
        limit: Optional[int] = None,
    ) -> Subscription:
        """Push the member's available benefits now and after every change"""
        return await self.notifier.subscribe(
            lambda: self.list_available_benefits(member_id, association_id, benefit_filter, limit),
            callback,
            label=f"member:{member_id}",
        )

    async def subscribe_business(self, business_id: str, callback: BenefitCallback) -> Subscription:
        """Push a business's full benefit list now and after every change"""
        return await self.notifier.subscribe(
            lambda: self.list_business_benefits(business_id),
            callback,
            label=f"business:{business_id}",
        )

    async def handle_external_change(self, reason: str = "") -> None:
        """Drop cached listings and refresh subscribers after an outside change"""
        dropped = self.cache.clear()
        logger.debug(f"External change ({reason}): dropped {dropped} cache entries")
        await self.notifier.notify_changed()

    # ====================
    # Maintenance
    # ====================

    async def resynchronize_counters(self, business_id: Optional[str] = None) -> CounterResyncResponse:
        """Recompute active benefit counters for one or all businesses"""
        business_ids = [business_id] if business_id else None
        return await self.counters.sync_all(business_ids)

    async def expire_benefits(self, now: Optional[datetime] = None) -> ExpirySweepResponse:
        """
        Move active benefits whose window has ended to expired.

        Individual failures are logged and skipped.
        """
        now = now or self._clock()
        candidates = await self.repository.list_expired_active_benefits(now)
        summary = ExpirySweepResponse(processed_at=now)
        touched_businesses = set()

        for benefit in candidates:
            try:
                updated = await self.repository.update_benefit(
                    benefit.benefit_id, {"state": BenefitState.EXPIRED, "updated_at": now}
                )
            except BenefitServiceError as e:
                logger.error(f"Failed to expire benefit {benefit.benefit_id}: {e}")
                summary.failed.append(benefit.benefit_id)
                continue
            if updated is None:
                summary.failed.append(benefit.benefit_id)
                continue

            summary.expired_count += 1
            touched_businesses.add(updated.business_id)
            if self.event_bus:
                await publish_benefit_expired(self.event_bus, updated)

        if touched_businesses:
            await self.counters.sync_all(sorted(touched_businesses))
        if summary.expired_count:
            self.cache.clear()
            await self.notifier.notify_changed()

        logger.info(f"Expiry sweep: {summary.expired_count} expired, {len(summary.failed)} failed")
        return summary

    # ====================
    # Benefit Management
    # ====================

    async def get_benefit(self, benefit_id: str) -> Benefit:
        """Get benefit by ID"""
        key = TTLCache.make_key("benefit", benefit_id=benefit_id)
        benefit = self.cache.get(key)
        if benefit is None:
            benefit = await self.repository.get_benefit(benefit_id)
            if benefit is None:
                raise BenefitNotFoundError(benefit_id)
            self.cache.set(key, benefit)
        return benefit

    async def create_benefit(self, draft: BenefitDraft, actor_id: str, actor_role: ActorRole) -> Benefit:
        """
        Create a benefit as a business or on a business's behalf by an association.

        Raises:
            BenefitValidationError: Malformed input
            BusinessNotFoundError: Owning business does not exist
        """
        if actor_role == ActorRole.BUSINESS:
            if draft.business_id and draft.business_id != actor_id:
                raise BenefitValidationError("A business can only create its own benefits", field="business_id")
            business_id = actor_id
        else:
            if not draft.business_id:
                raise BenefitValidationError("business_id is required for association-created benefits", field="business_id")
            business_id = draft.business_id

        business = await self.repository.get_business_profile(business_id)
        if business is None:
            raise BusinessNotFoundError(business_id)

        if actor_role == ActorRole.ASSOCIATION:
            association_ids = [actor_id]
        elif draft.association_ids is not None:
            association_ids = list(dict.fromkeys(draft.association_ids))
        else:
            association_ids = list(business.linked_association_ids)

        access_mode = draft.access_mode or (AccessMode.ASSOCIATION if association_ids else AccessMode.PUBLIC)
        self._validate_fields(
            title=draft.title,
            category=draft.category,
            start_at=draft.start_at,
            end_at=draft.end_at,
            access_mode=access_mode,
            association_ids=association_ids,
        )

        now = self._clock()
        benefit = Benefit(
            benefit_id=f"ben_{uuid.uuid4().hex[:16]}",
            title=draft.title.strip(),
            description=draft.description,
            discount=draft.discount,
            category=draft.category,
            start_at=draft.start_at,
            end_at=draft.end_at,
            state=BenefitState.ACTIVE,
            access_mode=access_mode,
            business_id=business_id,
            business_name=business.name,
            business_logo=business.logo_url,
            association_ids=association_ids,
            per_member_cap=_positive_or_none(draft.per_member_cap),
            global_cap=_positive_or_none(draft.global_cap),
            redemption_count=0,
            conditions=draft.conditions,
            tags=draft.tags,
            featured=draft.featured,
            image_url=draft.image_url,
            created_by=actor_id,
            created_at=now,
            updated_at=now,
        )

        created = await self.repository.create_benefit(benefit)
        logger.info(f"Benefit {created.benefit_id} created for business {business_id} by {actor_role.value} {actor_id}")

        await self._after_benefit_change([business_id])
        if self.event_bus:
            await publish_benefit_created(self.event_bus, created)
        return created

    async def update_benefit(self, benefit_id: str, update: BenefitUpdate) -> Benefit:
        """
        Apply a partial update.

        Raises:
            BenefitNotFoundError: Benefit does not exist
            BenefitValidationError: Resulting benefit is invalid
            BusinessNotFoundError: New owner does not exist
        """
        existing = await self.repository.get_benefit(benefit_id)
        if existing is None:
            raise BenefitNotFoundError(benefit_id)

        changes: Dict[str, Any] = {name: getattr(update, name) for name in update.model_fields_set}
        if not changes:
            return existing

        for cap_field in ("per_member_cap", "global_cap"):
            if cap_field in changes:
                changes[cap_field] = _positive_or_none(changes[cap_field])

        if changes.get("business_id") and changes["business_id"] != existing.business_id:
            business = await self.repository.get_business_profile(changes["business_id"])
            if business is None:
                raise BusinessNotFoundError(changes["business_id"])
            changes["business_name"] = business.name
            changes["business_logo"] = business.logo_url
        elif "business_id" in changes and not changes["business_id"]:
            raise BenefitValidationError("business_id cannot be empty", field="business_id")

        merged = existing.model_copy(update=changes)
        self._validate_fields(
            title=merged.title,
            category=merged.category,
            start_at=merged.start_at,
            end_at=merged.end_at,
            access_mode=merged.access_mode,
            association_ids=merged.association_ids,
        )
        if merged.global_cap is not None and merged.redemption_count > merged.global_cap:
            raise BenefitValidationError(
                f"global_cap {merged.global_cap} is below the {merged.redemption_count} redemptions already recorded",
                field="global_cap",
            )

        # Keep state consistent with the (possibly new) global cap
        if merged.state == BenefitState.ACTIVE and is_capped(merged):
            changes["state"] = BenefitState.EXHAUSTED
        elif merged.state == BenefitState.EXHAUSTED and not is_capped(merged):
            changes["state"] = BenefitState.ACTIVE

        changes["updated_at"] = self._clock()
        updated = await self.repository.update_benefit(benefit_id, changes)
        if updated is None:
            raise BenefitNotFoundError(benefit_id)

        logger.info(f"Benefit {benefit_id} updated: {sorted(update.model_fields_set)}")
        await self._after_benefit_change({existing.business_id, updated.business_id})
        if self.event_bus:
            await publish_benefit_updated(self.event_bus, updated, sorted(changes))
        return updated

    async def set_benefit_state(self, benefit_id: str, state: BenefitState) -> Benefit:
        """Transition a benefit to a new lifecycle state"""
        existing = await self.repository.get_benefit(benefit_id)
        if existing is None:
            raise BenefitNotFoundError(benefit_id)
        if existing.state == state:
            return existing
        if state == BenefitState.ACTIVE:
            if is_capped(existing):
                raise BenefitValidationError("Benefit has reached its global cap", field="state")
            if existing.end_at <= self._clock():
                raise BenefitValidationError("Benefit window has ended", field="state")
        elif state == BenefitState.EXHAUSTED and not is_capped(existing):
            raise BenefitValidationError("Benefit has not reached a global cap", field="state")

        updated = await self.repository.update_benefit(
            benefit_id, {"state": state, "updated_at": self._clock()}
        )
        if updated is None:
            raise BenefitNotFoundError(benefit_id)

        logger.info(f"Benefit {benefit_id} state {existing.state.value} -> {state.value}")
        await self._after_benefit_change([updated.business_id])
        if self.event_bus:
            await publish_benefit_updated(self.event_bus, updated, ["state"])
        return updated

    async def deactivate_benefit(self, benefit_id: str) -> Benefit:
        """Remove a benefit from circulation. Benefits are never hard-deleted."""
        return await self.set_benefit_state(benefit_id, BenefitState.INACTIVE)

    async def list_business_benefits(self, business_id: str) -> List[Benefit]:
        """All benefits owned by a business, newest first"""
        key = TTLCache.make_key("business_benefits", business_id=business_id)
        benefits = await self.cache.get_or_load(
            key, lambda: self.repository.list_benefits(business_id=business_id)
        )
        return list(benefits)

    async def list_association_benefits(self, association_id: str) -> List[Benefit]:
        """All benefits reachable through an association, newest first"""
        key = TTLCache.make_key("association_benefits", association_id=association_id)
        benefits = await self.cache.get_or_load(
            key, lambda: self.repository.list_benefits(association_id=association_id)
        )
        return list(benefits)

    # ====================
    # Discovery
    # ====================

    async def search_benefits(
        self,
        term: str,
        benefit_filter: Optional[BenefitFilter] = None,
        limit: int = 20,
    ) -> List[Benefit]:
        """Search currently usable benefits by title, description, business, category and tags"""
        benefit_filter = (benefit_filter or BenefitFilter()).model_copy(update={"search": term})
        key = TTLCache.make_key("search", filter=benefit_filter.model_dump(mode="json"), limit=limit)

        async def load():
            active = await self.repository.list_benefits(state=BenefitState.ACTIVE)
            return tuple(filter_benefits(active, benefit_filter, self._clock(), limit))

        return list(await self.cache.get_or_load(key, load))

    async def get_categories(self) -> List[str]:
        """Distinct categories in use, sorted"""
        categories = await self.cache.get_or_load(
            TTLCache.make_key("categories"), self.repository.list_categories
        )
        return sorted(set(categories))

    async def get_available_associations(self, business_id: str) -> List[AvailableAssociation]:
        """Associations a business is linked to, with display names"""
        key = TTLCache.make_key("business_associations", business_id=business_id)

        async def load():
            business = await self.repository.get_business_profile(business_id)
            if business is None:
                raise BusinessNotFoundError(business_id)
            associations = []
            for association_id in business.linked_association_ids:
                profile = await self.repository.get_association_profile(association_id)
                associations.append(AvailableAssociation(
                    association_id=association_id,
                    name=profile.name if profile else "Association",
                ))
            return tuple(associations)

        return list(await self.cache.get_or_load(key, load))

    # ====================
    # Helpers
    # ====================

    @staticmethod
    def _validate_fields(
        title: str,
        category: str,
        start_at: datetime,
        end_at: datetime,
        access_mode: AccessMode,
        association_ids: List[str],
    ) -> None:
        if not title or not title.strip():
            raise BenefitValidationError("title is required", field="title")
        if not category or not category.strip():
            raise BenefitValidationError("category is required", field="category")
        if end_at <= start_at:
            raise BenefitValidationError("end_at must be after start_at", field="end_at")
        if access_mode == AccessMode.ASSOCIATION and not association_ids:
            raise BenefitValidationError(
                "association access requires at least one association", field="association_ids"
            )

    async def _after_benefit_change(self, business_ids: Iterable[str]) -> None:
        self.cache.clear()
        for business_id in business_ids:
            try:
                await self.counters.sync_business(business_id)
            except BenefitServiceError as e:
                logger.error(f"Counter sync failed for business {business_id}: {e}")
        await self.notifier.notify_changed()
