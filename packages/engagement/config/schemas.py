"""Pydantic schemas for configuration files."""

from pydantic import BaseModel, Field

MS_PER_SECOND = 1000
MS_PER_MINUTE = 60 * MS_PER_SECOND
MS_PER_HOUR = 60 * MS_PER_MINUTE
MS_PER_DAY = 24 * MS_PER_HOUR


class TimeWindows(BaseModel):
    """Deadline windows, configurable by an admin."""

    lawyer_approval_hours: float = Field(default=24, gt=0)
    client_payment_minutes: float = Field(default=10, gt=0)
    case_payment_days: float = Field(default=7, gt=0)

    @property
    def approval_window_ms(self) -> int:
        return int(self.lawyer_approval_hours * MS_PER_HOUR)

    @property
    def payment_window_ms(self) -> int:
        return int(self.client_payment_minutes * MS_PER_MINUTE)

    @property
    def case_payment_window_ms(self) -> int:
        return int(self.case_payment_days * MS_PER_DAY)


class BookingConfig(BaseModel):
    """Booking validation rules."""

    min_description_length: int = 10
    default_urgency: str = "medium"
    follow_up_base_fee: int = Field(default=5000, gt=0)
    follow_up_discount: float = Field(default=0.2, ge=0, lt=1)

    @property
    def follow_up_fee(self) -> int:
        """Consultation fee charged for a follow-up booked from a case."""
        return round(self.follow_up_base_fee * (1 - self.follow_up_discount))


class TrackerConfig(BaseModel):
    """Deadline tracker settings."""

    tick_interval_seconds: float = Field(default=1.0, gt=0)


class NotificationsConfig(BaseModel):
    """Notification sink settings."""

    max_retained: int = 50


class CancellationConfig(BaseModel):
    """What happens to payments when an appointment is cancelled."""

    refund_confirmed_payment: bool = True
    void_pending_payment: bool = True


class EngineConfig(BaseModel):
    """Full configuration for the lifecycle engine."""

    time_windows: TimeWindows = Field(default_factory=TimeWindows)
    booking: BookingConfig = Field(default_factory=BookingConfig)
    tracker: TrackerConfig = Field(default_factory=TrackerConfig)
    notifications: NotificationsConfig = Field(default_factory=NotificationsConfig)
    cancellation: CancellationConfig = Field(default_factory=CancellationConfig)
