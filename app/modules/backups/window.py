"""
Movement window filter

Turns a calendar date into a half-open UTC window [start, end) anchored
at local midnight of the operating timezone.
"""

from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Callable, Iterable, List, Optional, TypeVar, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.core.config import settings
from .exceptions import ValidationError
from .schemas import Window

T = TypeVar("T")

DATE_FORMAT = "%Y-%m-%d"
DAY = timedelta(hours=24)


def resolve_timezone(tz: Union[str, tzinfo, None]) -> tzinfo:
    """Accept an IANA name or a tzinfo; None means the configured timezone."""
    if tz is None:
        tz = settings.EXPORT_TIMEZONE
    if isinstance(tz, tzinfo):
        return tz
    try:
        return ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown timezone: {tz}") from e


class MovementWindowFilter:
    """Computes day/period windows in the operating timezone"""

    def __init__(
        self,
        tz: Union[str, tzinfo, None] = None,
        clock: Optional[Callable[[], datetime]] = None,
        max_period_days: Optional[int] = None
    ):
        self.tz = resolve_timezone(tz)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.max_period_days = max_period_days or settings.EXPORT_MAX_PERIOD_DAYS

    def now(self) -> datetime:
        """Current wall-clock time in the operating timezone"""
        return self._clock().astimezone(self.tz)

    def today(self) -> date:
        return self.now().date()

    @staticmethod
    def parse_date(value: str, field: str = "date") -> date:
        """Parse an ISO calendar date (YYYY-MM-DD)."""
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(field, f"Data inválida para '{field}': informe YYYY-MM-DD")
        try:
            return datetime.strptime(value.strip(), DATE_FORMAT).date()
        except ValueError:
            raise ValidationError(
                field,
                f"Data inválida para '{field}': '{value}'. Use o formato YYYY-MM-DD"
            )

    def resolve_date(self, value: Optional[str], field: str = "date") -> date:
        """
        Absent value means today in the operating timezone. An explicit
        value that cannot be parsed is an error, never replaced by today.
        """
        if value is None:
            return self.today()
        return self.parse_date(value, field)

    def window_for(self, day: date, tz: Union[str, tzinfo, None] = None) -> Window:
        zone = resolve_timezone(tz) if tz is not None else self.tz
        local_midnight = datetime.combine(day, time.min, tzinfo=zone)
        start = local_midnight.astimezone(timezone.utc)
        return Window(start=start, end=start + DAY)

    def period_window(
        self,
        from_day: date,
        to_day: date,
        tz: Union[str, tzinfo, None] = None
    ) -> Window:
        if from_day > to_day:
            raise ValidationError("from", "A data inicial não pode ser posterior à data final")
        if (to_day - from_day).days > self.max_period_days:
            raise ValidationError(
                "to",
                f"O período de exportação não pode exceder {self.max_period_days} dias"
            )
        return Window(
            start=self.window_for(from_day, tz).start,
            end=self.window_for(to_day, tz).end
        )

    @staticmethod
    def narrow(
        records: Iterable[T],
        window: Window,
        timestamps: Callable[[T], Iterable[Optional[datetime]]]
    ) -> List[T]:
        """Keep records with at least one movement timestamp inside the window."""
        return [
            record for record in records
            if any(window.contains(ts) for ts in timestamps(record))
        ]


def window_for(day: date, tz: Union[str, tzinfo, None] = None) -> Window:
    """Daily window for ``day`` in ``tz`` (defaults to the operating timezone)."""
    return MovementWindowFilter(tz).window_for(day)
