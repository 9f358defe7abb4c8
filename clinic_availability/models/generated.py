from sqlalchemy import (
    Boolean, Column, Date, DateTime, ForeignKey, Index, Integer, Table, Text, Time,
    UniqueConstraint, text,
)

from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()
metadata = Base.metadata


class Locations(Base):
    __tablename__ = 'locations'

    name = Column(Text, nullable=False)
    id = Column(Integer, primary_key=True)
    city = Column(Text)
    address = Column(Text)
    is_active = Column(Boolean, nullable=False, server_default=text('1'))

    shifts = relationship('Shifts', back_populates='location')


class Services(Base):
    __tablename__ = 'services'

    name = Column(Text, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    id = Column(Integer, primary_key=True)
    buffer_minutes = Column(Integer, nullable=False, server_default=text('0'))
    lead_time_minutes = Column(Integer, nullable=False, server_default=text('0'))
    allows_twins = Column(Boolean, nullable=False, server_default=text('0'))
    twin_duration_minutes = Column(Integer)
    price_eur_cents = Column(Integer)
    is_active = Column(Boolean, nullable=False, server_default=text('1'))

    addons = relationship('ServiceAddons', back_populates='service')
    repeat_types = relationship('ServiceRepeatTypes', back_populates='service')


class ServiceAddons(Base):
    __tablename__ = 'service_addons'

    service_id = Column(ForeignKey('services.id', ondelete='CASCADE'), nullable=False)
    name = Column(Text, nullable=False)
    id = Column(Integer, primary_key=True)
    duration_minutes = Column(Integer, nullable=False, server_default=text('0'))
    price_eur_cents = Column(Integer, nullable=False, server_default=text('0'))
    is_active = Column(Boolean, nullable=False, server_default=text('1'))

    service = relationship('Services', back_populates='addons')


class ServiceRepeatTypes(Base):
    __tablename__ = 'service_repeat_types'

    service_id = Column(ForeignKey('services.id', ondelete='CASCADE'), nullable=False)
    label = Column(Text, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    id = Column(Integer, primary_key=True)
    price_eur_cents = Column(Integer, nullable=False, server_default=text('0'))
    visit_count = Column(Integer, nullable=False, server_default=text('2'))
    active = Column(Boolean, nullable=False, server_default=text('1'))

    service = relationship('Services', back_populates='repeat_types')


class Staff(Base):
    __tablename__ = 'staff'

    first_name = Column(Text, nullable=False)
    id = Column(Integer, primary_key=True)
    last_name = Column(Text)
    email = Column(Text)
    is_active = Column(Boolean, nullable=False, server_default=text('1'))

    shifts = relationship('Shifts', back_populates='staff')


class StaffServices(Base):
    __tablename__ = 'staff_services'
    __table_args__ = (
        UniqueConstraint('staff_id', 'service_id'),
    )

    staff_id = Column(ForeignKey('staff.id', ondelete='CASCADE'), nullable=False)
    service_id = Column(ForeignKey('services.id', ondelete='CASCADE'), nullable=False)
    id = Column(Integer, primary_key=True)
    is_active = Column(Boolean, nullable=False, server_default=text('1'))
    is_twin_qualified = Column(Boolean, nullable=False, server_default=text('0'))


class StaffLocations(Base):
    __tablename__ = 'staff_locations'
    __table_args__ = (
        UniqueConstraint('staff_id', 'location_id'),
    )

    staff_id = Column(ForeignKey('staff.id', ondelete='CASCADE'), nullable=False)
    location_id = Column(ForeignKey('locations.id', ondelete='CASCADE'), nullable=False)
    id = Column(Integer, primary_key=True)
    is_active = Column(Boolean, nullable=False, server_default=text('1'))


class Shifts(Base):
    __tablename__ = 'shifts'

    staff_id = Column(ForeignKey('staff.id', ondelete='CASCADE'), nullable=False)
    location_id = Column(ForeignKey('locations.id', ondelete='CASCADE'), nullable=False)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    id = Column(Integer, primary_key=True)
    is_recurring = Column(Boolean, nullable=False, server_default=text('0'))
    recurrence_end_date = Column(Date)
    parent_shift_id = Column(ForeignKey('shifts.id', ondelete='CASCADE'))
    exception_date = Column(Date)
    is_active = Column(Boolean, nullable=False, server_default=text('1'))
    notes = Column(Text)

    staff = relationship('Staff', back_populates='shifts')
    location = relationship('Locations', back_populates='shifts')
    breaks = relationship('ShiftBreaks', back_populates='shift')


t_shift_services = Table(
    'shift_services', metadata,
    Column('shift_id', ForeignKey('shifts.id', ondelete='CASCADE'), nullable=False),
    Column('service_id', ForeignKey('services.id', ondelete='CASCADE'), nullable=False),
    UniqueConstraint('shift_id', 'service_id')
)


class ShiftBreaks(Base):
    __tablename__ = 'shift_breaks'

    shift_id = Column(ForeignKey('shifts.id', ondelete='CASCADE'), nullable=False)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    id = Column(Integer, primary_key=True)
    name = Column(Text)

    shift = relationship('Shifts', back_populates='breaks')


class StaffRecurringBreaks(Base):
    __tablename__ = 'staff_recurring_breaks'

    staff_id = Column(ForeignKey('staff.id', ondelete='CASCADE'), nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    id = Column(Integer, primary_key=True)
    day_of_week = Column(Integer)  # 0 = Monday, NULL = every day


class BlackoutPeriods(Base):
    __tablename__ = 'blackout_periods'

    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    id = Column(Integer, primary_key=True)
    location_id = Column(ForeignKey('locations.id', ondelete='CASCADE'))  # NULL + staff NULL = global
    staff_id = Column(ForeignKey('staff.id', ondelete='CASCADE'))
    reason = Column(Text)
    is_active = Column(Boolean, nullable=False, server_default=text('1'))


class SitewideBreaks(Base):
    __tablename__ = 'sitewide_breaks'

    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    id = Column(Integer, primary_key=True)
    name = Column(Text)
    start_time = Column(Time)  # NULL = whole day
    end_time = Column(Time)
    is_active = Column(Boolean, nullable=False, server_default=text('1'))


class TimeOffRequests(Base):
    __tablename__ = 'time_off_requests'

    staff_id = Column(ForeignKey('staff.id', ondelete='CASCADE'), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    id = Column(Integer, primary_key=True)
    status = Column(Text, nullable=False, server_default=text("'pending'"))
    type = Column(Text)
    reason = Column(Text)


class Bookings(Base):
    __tablename__ = 'bookings'
    __table_args__ = (
        # Partial unique index: one live booking per staff member and start instant
        Index(
            'uq_bookings_staff_start_live', 'staff_id', 'start_time',
            unique=True,
            sqlite_where=text("status != 'cancelled'"),
            postgresql_where=text("status != 'cancelled'"),
        ),
    )

    staff_id = Column(ForeignKey('staff.id', ondelete='CASCADE'), nullable=False)
    location_id = Column(ForeignKey('locations.id'), nullable=False)
    service_id = Column(ForeignKey('services.id'), nullable=False)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    status = Column(Text, nullable=False, server_default=text("'confirmed'"))
    id = Column(Integer, primary_key=True)
    client_id = Column(Integer)
    shift_id = Column(ForeignKey('shifts.id', ondelete='SET NULL'))
    price_eur_cents = Column(Integer)
    is_twin = Column(Boolean, nullable=False, server_default=text('0'))
    parent_booking_id = Column(ForeignKey('bookings.id', ondelete='SET NULL'))
    continuation_id = Column(ForeignKey('booking_continuations.id', ondelete='SET NULL', use_alter=True))
    repeat_type_id = Column(ForeignKey('service_repeat_types.id', ondelete='SET NULL'))
    created_at = Column(DateTime, server_default=text('CURRENT_TIMESTAMP'))


class BookingContinuations(Base):
    __tablename__ = 'booking_continuations'

    token = Column(Text, nullable=False, unique=True)
    origin_booking_id = Column(ForeignKey('bookings.id', ondelete='CASCADE'), nullable=False)
    repeat_type_id = Column(ForeignKey('service_repeat_types.id', ondelete='CASCADE'), nullable=False)
    remaining_visits = Column(Integer, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    id = Column(Integer, primary_key=True)
    consumed = Column(Boolean, nullable=False, server_default=text('0'))
    claimed_booking_id = Column(ForeignKey('bookings.id', ondelete='SET NULL'))
    created_at = Column(DateTime, server_default=text('CURRENT_TIMESTAMP'))

    repeat_type = relationship('ServiceRepeatTypes')
    origin_booking = relationship('Bookings', foreign_keys=[origin_booking_id])
