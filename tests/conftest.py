import fnmatch
from datetime import date, datetime, time, timedelta

import pytest
from sqlalchemy import insert
from sqlalchemy.orm import sessionmaker

from clinic_availability.database import make_engine
from clinic_availability.models.generated import (
    Base,
    BlackoutPeriods,
    Bookings,
    Locations,
    ServiceAddons,
    ServiceRepeatTypes,
    Services,
    ShiftBreaks,
    Shifts,
    SitewideBreaks,
    Staff,
    StaffLocations,
    StaffRecurringBreaks,
    StaffServices,
    TimeOffRequests,
    t_shift_services,
)
from clinic_availability.services.slots import AvailabilityEngine, BookingConfig, SlotHoldStore

# Sunday morning; MONDAY is the day most tests query
NOW = datetime(2030, 1, 6, 8, 0)
MONDAY = date(2030, 1, 7)


def at(day: date, hhmm: str) -> datetime:
    hours, minutes = hhmm.split(":")
    return datetime.combine(day, time(int(hours), int(minutes)))


class Clock:
    """Manually advanced monotonic clock for TTLCache."""

    def __init__(self, start: float = 1000.0):
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


class FakeRedis:
    """In-memory stand-in for the sorted-set and set commands the hold store uses."""

    def __init__(self):
        self.zsets: dict[str, dict[str, float]] = {}
        self.sets: dict[str, set[str]] = {}
        self.expiry: dict[str, int] = {}

    # Sorted sets
    def zadd(self, key, mapping):
        zset = self.zsets.setdefault(key, {})
        added = sum(1 for member in mapping if member not in zset)
        zset.update(mapping)
        return added

    def zrem(self, key, *members):
        zset = self.zsets.get(key, {})
        return sum(1 for member in members if zset.pop(member, None) is not None)

    def zrangebyscore(self, key, low, high, withscores=False):
        low = float(low)
        high = float(high)
        items = sorted(
            (score, member) for member, score in self.zsets.get(key, {}).items()
            if low <= score <= high
        )
        if withscores:
            return [(member, score) for score, member in items]
        return [member for _, member in items]

    # Sets
    def sadd(self, key, *members):
        target = self.sets.setdefault(key, set())
        added = len(set(members) - target)
        target.update(members)
        return added

    def smembers(self, key):
        return set(self.sets.get(key, set()))

    # Keys
    def expireat(self, key, when):
        self.expiry[key] = int(when)
        return True

    def delete(self, *keys):
        removed = 0
        for key in keys:
            removed += int(self.zsets.pop(key, None) is not None)
            removed += int(self.sets.pop(key, None) is not None)
        return removed

    def keys(self, pattern="*"):
        return [k for k in (*self.zsets, *self.sets) if fnmatch.fnmatch(k, pattern)]

    def ping(self):
        return True

    def pipeline(self):
        return FakePipeline(self)


class FakePipeline:
    def __init__(self, redis: FakeRedis):
        self.redis = redis
        self.calls = []

    def __getattr__(self, name):
        method = getattr(self.redis, name)

        def queue(*args, **kwargs):
            self.calls.append((method, args, kwargs))
            return self

        return queue

    def execute(self):
        results = [method(*args, **kwargs) for method, args, kwargs in self.calls]
        self.calls = []
        return results


class ClinicBuilder:
    """Inserts schedule rows with sensible defaults."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def _add(self, row):
        with self.session_factory() as db:
            db.add(row)
            db.commit()
            db.refresh(row)
            return row

    def location(self, name="Centrum", **kw):
        return self._add(Locations(name=name, **kw))

    def service(self, name="Echo", duration_minutes=30, **kw):
        return self._add(Services(name=name, duration_minutes=duration_minutes, **kw))

    def addon(self, service_id, duration_minutes, **kw):
        return self._add(ServiceAddons(
            service_id=service_id, name="Extra", duration_minutes=duration_minutes, **kw
        ))

    def repeat_type(self, service_id, duration_minutes=20, visit_count=3, price_eur_cents=4500, **kw):
        return self._add(ServiceRepeatTypes(
            service_id=service_id,
            label="Follow-up",
            duration_minutes=duration_minutes,
            visit_count=visit_count,
            price_eur_cents=price_eur_cents,
            **kw,
        ))

    def staff(self, first_name="Anna", service_ids=(), location_ids=(), twin_qualified=False, **kw):
        member = self._add(Staff(first_name=first_name, **kw))
        with self.session_factory() as db:
            for service_id in service_ids:
                db.add(StaffServices(
                    staff_id=member.id, service_id=service_id, is_twin_qualified=twin_qualified
                ))
            for location_id in location_ids:
                db.add(StaffLocations(staff_id=member.id, location_id=location_id))
            db.commit()
        return member

    def shift(
        self,
        staff_id,
        location_id,
        start,
        end,
        service_ids=(),
        is_recurring=False,
        parent_shift_id=None,
        exception_date=None,
        is_active=True,
        recurrence_end_date=None,
    ):
        shift = self._add(Shifts(
            staff_id=staff_id,
            location_id=location_id,
            start_time=start,
            end_time=end,
            is_recurring=is_recurring,
            parent_shift_id=parent_shift_id,
            exception_date=exception_date,
            is_active=is_active,
            recurrence_end_date=recurrence_end_date,
        ))
        if service_ids:
            with self.session_factory() as db:
                db.execute(insert(t_shift_services), [
                    {"shift_id": shift.id, "service_id": service_id} for service_id in service_ids
                ])
                db.commit()
        return shift

    def tombstone(self, parent: Shifts, on: date):
        """Inactive override suppressing one occurrence (placeholder whole-day times)."""
        return self.shift(
            parent.staff_id,
            parent.location_id,
            datetime.combine(on, time.min),
            datetime.combine(on, time(23, 59, 59)),
            parent_shift_id=parent.id,
            exception_date=on,
            is_active=False,
        )

    def shift_break(self, shift_id, start, end):
        return self._add(ShiftBreaks(shift_id=shift_id, start_time=start, end_time=end))

    def staff_break(self, staff_id, start_time, end_time, day_of_week=None):
        return self._add(StaffRecurringBreaks(
            staff_id=staff_id, start_time=start_time, end_time=end_time, day_of_week=day_of_week
        ))

    def blackout(self, start, end, location_id=None, staff_id=None):
        return self._add(BlackoutPeriods(
            start_date=start, end_date=end, location_id=location_id, staff_id=staff_id
        ))

    def sitewide_break(self, start_date, end_date, start_time=None, end_time=None):
        return self._add(SitewideBreaks(
            start_date=start_date, end_date=end_date, start_time=start_time, end_time=end_time
        ))

    def time_off(self, staff_id, start_date, end_date, status="approved"):
        return self._add(TimeOffRequests(
            staff_id=staff_id, start_date=start_date, end_date=end_date, status=status
        ))

    def booking(self, staff_id, location_id, service_id, start, minutes=30, status="confirmed", **kw):
        return self._add(Bookings(
            staff_id=staff_id,
            location_id=location_id,
            service_id=service_id,
            start_time=start,
            end_time=start + timedelta(minutes=minutes),
            status=status,
            **kw,
        ))


@pytest.fixture
def session_factory(tmp_path):
    # File-backed so every session gets its own connection (threads included)
    engine = make_engine(f"sqlite:///{tmp_path / 'clinic.db'}")
    Base.metadata.create_all(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def build(session_factory):
    return ClinicBuilder(session_factory)


@pytest.fixture
def config():
    return BookingConfig(
        min_advance_minutes=60,
        slot_step_minutes=15,
        heatmap_workers=2,
        heatmap_timeout_seconds=5.0,
    )


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def hold_store(fake_redis, config):
    return SlotHoldStore(fake_redis, config)


@pytest.fixture
def engine(session_factory, config, hold_store):
    return AvailabilityEngine(session_factory, config, hold_store=hold_store, now=lambda: NOW)


@pytest.fixture
def clinic(build):
    """One location, one 30-minute service, one qualified staff member."""
    location = build.location()
    service = build.service(duration_minutes=30)
    staff = build.staff(service_ids=[service.id], location_ids=[location.id])
    return {"location": location, "service": service, "staff": staff}
