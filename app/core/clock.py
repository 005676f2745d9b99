from datetime import date, datetime, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp, the representation stored in the database"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Clock:
    """Wall clock used by the booking services.

    now() is the UTC instant used for deadlines; today() and local_now() are
    the clinic's wall time used against schedule slots. Tests replace it.
    """

    def now(self) -> datetime:
        return utcnow()

    def today(self) -> date:
        return date.today()

    def local_now(self) -> datetime:
        return datetime.now()


system_clock = Clock()
