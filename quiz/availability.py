from dataclasses import dataclass
from datetime import timezone as dt_timezone
from typing import Optional

NOT_STARTED = "not-started"
ENDED = "ended"


@dataclass(frozen=True)
class Availability:
    available: bool
    reason: Optional[str] = None

    def to_dict(self):
        return {"available": self.available, "reason": self.reason}


def _aware(value):
    # naive timestamps are stored and compared as UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=dt_timezone.utc)
    return value


def check_availability(settings, now) -> Availability:
    """
    Decide whether an attempt may start at ``now`` given the quiz's window.

    ``settings`` is anything with ``start_date`` and ``end_date`` attributes
    (a QuizSettings snapshot or a Quiz row). Both bounds are optional.
    """
    now = _aware(now)
    start_date = _aware(settings.start_date)
    end_date = _aware(settings.end_date)

    if start_date is not None and now < start_date:
        return Availability(available=False, reason=NOT_STARTED)

    if end_date is not None and now > end_date:
        return Availability(available=False, reason=ENDED)

    return Availability(available=True)
