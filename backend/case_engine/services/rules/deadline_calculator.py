"""
Deadline Calculator (Texas rules, v1)

AUTHORITY: SYSTEM
Computes estimated deadlines from confirmed service facts.
Based on common Texas citation language:
- Answer deadline: served_at + 14 days, then the Monday at/after that date, 10:00 AM
- Check docket: answer deadline + 7 days
- Earliest default info: return_filed_at + 1 day (only if the return was filed)

These are estimates. The exact deadline depends on the citation issued by
the court, so the user confirms it separately (answer_deadline_confirmed).

Date-only facts are read in the case calendar (local civil time), never as
UTC midnight. No wall-clock reads, no I/O.
"""
from datetime import date, datetime, time, timedelta, tzinfo
from typing import List, Optional, Union

from dateutil import tz
from dateutil.relativedelta import relativedelta, MO

from ...config import CASE_TIMEZONE
from ...models.domain import ComputedDeadline, DeadlineKey, ServiceFacts


# =============================================================================
# RULE CONFIGURATION
# =============================================================================

CALC_VERSION = "TX_V1"
ANSWER_DAYS = 14
CHECK_DOCKET_OFFSET_DAYS = 7
EARLIEST_INFO_OFFSET_DAYS = 1
ANSWER_TIME_OF_DAY = time(10, 0)


def case_calendar(name: Optional[str] = None) -> tzinfo:
    """Resolve the case calendar, defaulting to CASE_TIMEZONE."""
    zone = tz.gettz(name or CASE_TIMEZONE)
    if zone is None:
        raise ValueError(f"Unknown time zone: {name or CASE_TIMEZONE}")
    return zone


def parse_local_date(value: Union[date, str]) -> date:
    """Read a YYYY-MM-DD value as a calendar date. Never goes through UTC."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value.strip()[:10])


def next_monday(day: date) -> date:
    """The same date when it is a Monday, otherwise the following Monday. Never moves backward."""
    return day + relativedelta(weekday=MO(+1))


def at_local_time(day: date, at: time, calendar: tzinfo) -> datetime:
    return datetime.combine(day, at).replace(tzinfo=calendar)


def compute_deadlines_from_service_facts(
    facts: ServiceFacts,
    calendar: Optional[tzinfo] = None,
) -> List[ComputedDeadline]:
    """
    Compute the system deadlines for a case.

    Returns an empty list when served_at is missing. Output order is
    answer_deadline_estimated, default_earliest_info (optional),
    check_docket_after_answer_deadline. due_at values are aware datetimes in
    the case calendar.
    """
    if not facts.served_at:
        return []

    calendar = calendar or case_calendar()
    served_at = parse_local_date(facts.served_at)
    deadlines: List[ComputedDeadline] = []

    # 1. Answer deadline
    raw_answer_date = served_at + timedelta(days=ANSWER_DAYS)
    answer_date = next_monday(raw_answer_date)
    answer_deadline = at_local_time(answer_date, ANSWER_TIME_OF_DAY, calendar)

    deadlines.append(ComputedDeadline(
        key=DeadlineKey.ANSWER_DEADLINE_ESTIMATED.value,
        due_at=answer_deadline,
        rationale=(
            f"Estimated answer deadline: {ANSWER_DAYS} days after service ({served_at.isoformat()}), "
            f"then next Monday at 10:00 AM. Based on common Texas citation language. "
            f"Please confirm the exact deadline shown on your citation. [{CALC_VERSION}]"
        ),
        calc_version=CALC_VERSION,
    ))

    # 2. Earliest default-judgment info
    if facts.return_filed_at:
        return_filed_at = parse_local_date(facts.return_filed_at)
        earliest_info = at_local_time(
            return_filed_at + timedelta(days=EARLIEST_INFO_OFFSET_DAYS), time(0, 0), calendar
        )
        deadlines.append(ComputedDeadline(
            key=DeadlineKey.DEFAULT_EARLIEST_INFO.value,
            due_at=earliest_info,
            rationale=(
                f"Earliest date default judgment info may be available: "
                f"{EARLIEST_INFO_OFFSET_DAYS} day after return filed ({return_filed_at.isoformat()}). "
                f"[{CALC_VERSION}]"
            ),
            calc_version=CALC_VERSION,
        ))

    # 3. Check docket (wall-clock 10:00 is kept across DST changes)
    check_docket = at_local_time(
        answer_date + timedelta(days=CHECK_DOCKET_OFFSET_DAYS), ANSWER_TIME_OF_DAY, calendar
    )
    deadlines.append(ComputedDeadline(
        key=DeadlineKey.CHECK_DOCKET_AFTER_ANSWER_DEADLINE.value,
        due_at=check_docket,
        rationale=(
            f"Check court docket {CHECK_DOCKET_OFFSET_DAYS} days after estimated answer deadline "
            f"to verify whether an answer was filed. [{CALC_VERSION}]"
        ),
        calc_version=CALC_VERSION,
    ))

    return deadlines
