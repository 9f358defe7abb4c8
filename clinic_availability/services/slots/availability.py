# clinic_availability/services/slots/availability.py
"""
Day availability: the slot pipeline for one (service, location, date[, staff]).

  cache ─miss→ expand shifts → qualify → gather exclusions → generate slots
        ─hit──────────────────────────────────────────────────────────────┐
                                                                          ↓
                                                    hide other sessions' holds

Holds are applied after the cache so a cached entry never depends on
who is asking.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Callable, Iterable

from redis import RedisError
from sqlalchemy.orm import Session

from ..errors import InvalidRange, SlotUnavailable, Unqualified, UpstreamUnavailable
from .cache import TTLCache, day_slots_key, heatmap_key
from .calculator import Slot, generate_slots, resolve_duration, sort_slots
from .config import BookingConfig, get_booking_config
from .exclusions import collect_exclusions
from .expander import ShiftInstance, expand_shifts
from .heatmap import OUTSIDE_HORIZON, HeatmapDay, build_heatmap
from .holds import Hold, SlotHoldStore
from .intervals import Interval, day_interval, intersects
from .store import AvailabilityStore

logger = logging.getLogger(__name__)


class AvailabilityEngine:
    """
    Entry point for day-slot, heatmap and hold operations.

    Each computation opens its own Session from session_factory, so heatmap
    days can run on worker threads.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        config: BookingConfig | None = None,
        hold_store: SlotHoldStore | None = None,
        now: Callable[[], datetime] | None = None,
        store_cls: type[AvailabilityStore] = AvailabilityStore,
        day_cache: TTLCache | None = None,
        heatmap_cache: TTLCache | None = None,
    ):
        self.session_factory = session_factory
        self.config = config or get_booking_config()
        self.hold_store = hold_store
        self.now = now or self.config.local_now
        self.store_cls = store_cls
        self.day_cache = day_cache if day_cache is not None else TTLCache(
            self.config.cache_ttl_seconds, self.config.cache_max_size
        )
        self.heatmap_cache = heatmap_cache if heatmap_cache is not None else TTLCache(
            self.config.cache_ttl_seconds, self.config.cache_max_size
        )

    # ── Day slots ────────────────────────────────────────────────────────

    def day_slots(
        self,
        service_id: int,
        location_id: int,
        target_date: date,
        staff_id: int | None = None,
        is_twin: bool = False,
        addon_ids: Iterable[int] = (),
        repeat_type_id: int | None = None,
        exclude_booking_id: int | None = None,
        session_token: str | None = None,
    ) -> list[Slot]:
        """
        Bookable slots for a service at a location on a date.

        Args:
            staff_id: Restrict to one staff member
            is_twin: Twin pregnancy (longer duration, twin-qualified staff only)
            addon_ids: Selected add-ons; their durations are added
            repeat_type_id: Follow-up visit type overriding the base duration
            exclude_booking_id: Booking being rescheduled; bypasses the cache
            session_token: Caller's checkout session; its own holds stay visible

        Returns:
            Slots ordered by (start_time, staff_id).
        """
        self.validate_day(target_date)
        addon_ids = tuple(addon_ids)

        slots = self.cached_day_slots(
            service_id, location_id, target_date,
            staff_id=staff_id,
            is_twin=is_twin,
            addon_ids=addon_ids,
            repeat_type_id=repeat_type_id,
            exclude_booking_id=exclude_booking_id,
        )
        return self._hide_held(slots, target_date, session_token)

    def cached_day_slots(
        self,
        service_id: int,
        location_id: int,
        target_date: date,
        staff_id: int | None = None,
        is_twin: bool = False,
        addon_ids: tuple[int, ...] = (),
        repeat_type_id: int | None = None,
        exclude_booking_id: int | None = None,
    ) -> list[Slot]:
        """Day slots through the cache, without hold filtering or date checks."""
        # Rescheduling sees a different booking set, never cache it
        if exclude_booking_id is not None:
            return self.compute_day_slots(
                service_id, location_id, target_date, staff_id, is_twin,
                addon_ids, repeat_type_id, exclude_booking_id,
            )

        key = day_slots_key(
            service_id, location_id, target_date, staff_id, is_twin,
            addon_ids, repeat_type_id,
        )
        cached = self.day_cache.get(key)
        if cached is not None:
            return cached

        slots = self.compute_day_slots(
            service_id, location_id, target_date, staff_id, is_twin,
            addon_ids, repeat_type_id,
        )
        self.day_cache.set(key, slots)
        return slots

    def compute_day_slots(
        self,
        service_id: int,
        location_id: int,
        target_date: date,
        staff_id: int | None = None,
        is_twin: bool = False,
        addon_ids: tuple[int, ...] = (),
        repeat_type_id: int | None = None,
        exclude_booking_id: int | None = None,
    ) -> list[Slot]:
        """Run the full pipeline for one day against the store."""
        with self.session_factory() as db:
            store = self.store_cls(db)

            # Step 1: Service rules and duration
            rules = store.get_service_rules(service_id)
            store.ensure_location(location_id)

            base_minutes = rules.duration_minutes
            if repeat_type_id is not None:
                repeat_type = store.get_repeat_type(repeat_type_id)
                if repeat_type.service_id == service_id:
                    base_minutes = repeat_type.duration_minutes
                else:
                    logger.warning(
                        "Repeat type %s belongs to service %s, not %s; using base duration",
                        repeat_type_id, repeat_type.service_id, service_id,
                    )

            if is_twin and not rules.allows_twins:
                logger.warning("Twin requested for service %s which does not allow twins", service_id)
                is_twin = False

            duration = resolve_duration(
                base_minutes,
                store.get_addon_minutes(service_id, list(addon_ids)),
                is_twin=is_twin,
                allows_twins=rules.allows_twins,
                twin_duration_minutes=rules.twin_duration_minutes,
            )
            if duration <= 0:
                logger.info("Service %s has no duration, no slots", service_id)
                return []

            # Step 2: Shift instances touching the day (previous day for overnight shifts)
            window_start = target_date - timedelta(days=1)
            window_end = target_date + timedelta(days=1)
            definitions = store.list_shift_definitions(location_id, window_start, window_end, staff_id)
            instances = expand_shifts(definitions, window_start, window_end)
            origins = {d.id: d.start_time for d in definitions if d.is_recurring}

            # Step 3: Qualification filter
            day = day_interval(target_date)
            qualified_cache: dict[int, bool] = {}
            candidates: list[ShiftInstance] = []
            for instance in instances:
                if instance.location_id != location_id:
                    continue
                if staff_id is not None and instance.staff_id != staff_id:
                    continue
                if not intersects(instance.interval, day):
                    continue
                try:
                    self._check_bookable(
                        store, qualified_cache, instance, service_id, location_id, is_twin
                    )
                except Unqualified as exc:
                    logger.debug("Pruned shift %s: %s", instance.shift_id, exc)
                    continue
                candidates.append(instance)

            if not candidates:
                return []

            # Step 4: Exclusions for every candidate, fetched once
            window = Interval(
                min(i.start_time for i in candidates),
                max(i.end_time for i in candidates),
            )
            sources = store.list_exclusion_sources(
                {i.staff_id for i in candidates},
                {i.shift_id for i in candidates},
                window,
            )

        # Step 5: Generate (pure)
        lead_minutes = max(self.config.min_advance_minutes, rules.lead_time_minutes)
        earliest_start = self.now() + timedelta(minutes=lead_minutes)

        slots: list[Slot] = []
        for instance in candidates:
            exclusions = collect_exclusions(
                instance,
                sources,
                shift_origin=origins.get(instance.definition_id),
                exclude_booking_id=exclude_booking_id,
            )
            for slot in generate_slots(
                instance,
                exclusions,
                duration_minutes=duration,
                step_minutes=self.config.slot_step_minutes,
                earliest_start=earliest_start,
                buffer_minutes=rules.buffer_minutes,
            ):
                # A day owns the slots that start on it
                if day.start <= slot.start_time < day.end:
                    slots.append(slot)

        return sort_slots(slots)

    # ── Heatmap ──────────────────────────────────────────────────────────

    def heatmap(
        self,
        service_id: int,
        location_id: int,
        start: date,
        end: date,
        staff_id: int | None = None,
    ) -> list[HeatmapDay]:
        """Per-day slot counts for [start, end]; see heatmap.build_heatmap."""
        self._validate_range(start, end)

        key = heatmap_key(service_id, location_id, start, end, staff_id)
        cached = self.heatmap_cache.get(key)
        if cached is not None:
            return cached

        # Unknown service or location fails the whole request, not each day
        with self.session_factory() as db:
            store = self.store_cls(db)
            store.get_service_rules(service_id)
            store.ensure_location(location_id)

        days = build_heatmap(self, service_id, location_id, start, end, staff_id)
        # Partial results are returned but never cached; days outside the
        # booking horizon are settled, not partial
        if all(day.error in (None, OUTSIDE_HORIZON) for day in days):
            self.heatmap_cache.set(key, days)
        return days

    # ── Holds ────────────────────────────────────────────────────────────

    def place_hold(
        self,
        staff_id: int,
        start: datetime,
        end: datetime,
        session_token: str,
    ) -> Hold:
        """
        Hold a slot for a checkout session.

        Raises:
            SlotUnavailable: A live booking or another session's hold overlaps
            UpstreamUnavailable: Holds are disabled or Redis failed
        """
        if end <= start:
            raise InvalidRange("Hold end must be after start")
        if self.hold_store is None:
            raise UpstreamUnavailable("Slot holds are disabled (no Redis configured)")

        interval = Interval(start, end)
        with self.session_factory() as db:
            bookings = self.store_cls(db).list_busy_bookings({staff_id}, interval)
        if bookings:
            raise SlotUnavailable("Slot is already booked")

        now = self.now()
        try:
            holds = self.hold_store.live_holds(
                {staff_id}, [start.date() - timedelta(days=1), start.date()], now
            )
            for hold in holds:
                if hold.session_token != session_token and intersects(hold.interval, interval):
                    raise SlotUnavailable("Slot is held by another session")
            return self.hold_store.place_hold(staff_id, start, end, session_token, now)
        except RedisError as exc:
            logger.exception("Failed to place hold for staff %s at %s", staff_id, start)
            raise UpstreamUnavailable("Hold store unavailable") from exc

    def release_holds(self, session_token: str) -> int:
        if self.hold_store is None:
            return 0
        try:
            return self.hold_store.release_session(session_token)
        except RedisError as exc:
            logger.exception("Failed to release holds")
            raise UpstreamUnavailable("Hold store unavailable") from exc

    def clear_caches(self) -> int:
        return self.day_cache.clear() + self.heatmap_cache.clear()

    # ── Helpers ──────────────────────────────────────────────────────────

    def validate_day(self, target_date: date) -> None:
        """Raise InvalidRange for past dates and dates beyond the booking horizon."""
        today = self.now().date()
        if target_date < today:
            raise InvalidRange("Date cannot be in the past")
        if target_date > today + timedelta(days=self.config.horizon_days):
            raise InvalidRange(
                f"Date cannot be more than {self.config.horizon_days} days ahead"
            )

    def _validate_range(self, start: date, end: date) -> None:
        if end < start:
            raise InvalidRange("End date is before start date")
        days = (end - start).days + 1
        if days > self.config.max_heatmap_days:
            raise InvalidRange(
                f"Range of {days} days exceeds the maximum of {self.config.max_heatmap_days}"
            )

    @staticmethod
    def _check_bookable(
        store: AvailabilityStore,
        qualified_cache: dict[int, bool],
        instance: ShiftInstance,
        service_id: int,
        location_id: int,
        is_twin: bool,
    ) -> None:
        """
        Raise Unqualified unless the instance can serve the request:
        service offered on the shift, staff qualified and assigned.
        """
        if service_id not in instance.service_ids:
            raise Unqualified(f"service {service_id} not offered on shift {instance.shift_id}")

        staff_id = instance.staff_id
        if staff_id not in qualified_cache:
            qualified_cache[staff_id] = (
                store.is_qualified(staff_id, service_id, is_twin)
                and store.is_assigned(staff_id, location_id)
            )
        if not qualified_cache[staff_id]:
            raise Unqualified(
                f"staff {staff_id} not qualified for service {service_id} at location {location_id}"
            )

    def _hide_held(
        self,
        slots: list[Slot],
        target_date: date,
        session_token: str | None,
    ) -> list[Slot]:
        """Drop slots overlapping live holds of other sessions."""
        if self.hold_store is None or not slots:
            return slots

        try:
            holds = self.hold_store.live_holds(
                {s.staff_id for s in slots},
                [target_date - timedelta(days=1), target_date],
                self.now(),
            )
        except RedisError:
            logger.warning("Hold store unavailable, returning slots without hold filtering")
            return slots

        blocking = [h for h in holds if h.session_token != session_token]
        if not blocking:
            return slots

        return [
            slot for slot in slots
            if not any(
                h.staff_id == slot.staff_id and intersects(h.interval, slot.interval)
                for h in blocking
            )
        ]
