# gestioo/visits/aggregation.py

"""Count tables for the visit summary sheet. All functions are pure."""

from collections import Counter
from datetime import date, datetime, tzinfo
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from gestioo.visits.models import CHECKLIST_FLAGS, Visit

NO_DATE = "Sin fecha"

OTHER_REQUESTS = "Solicitudes adicionales"
SCHEDULED = "Solicitud Programada"


def local_date(dt: datetime, tz: Optional[tzinfo]) -> date:
    """Calendar day of ``dt`` in ``tz``; naive values are taken as already local."""
    if tz is not None and dt.tzinfo is not None:
        dt = dt.astimezone(tz)
    return dt.date()


def by_day(visits: Iterable[Visit], tz: Optional[tzinfo] = None) -> List[Tuple[Union[date, str], int]]:
    """Visits per local calendar day, oldest first.

    Visits without a start time are counted under ``Sin fecha`` at the end so
    the block always adds up to the number of visits.
    """
    counts: Counter = Counter()
    undated = 0
    for v in visits:
        if v.start is None:
            undated += 1
        else:
            counts[local_date(v.start, tz)] += 1
    rows: List[Tuple[Union[date, str], int]] = sorted(counts.items())
    if undated:
        rows.append((NO_DATE, undated))
    return rows


def checklist_counts(visits: Iterable[Visit]) -> List[Tuple[str, int]]:
    visits = list(visits)
    return [(label, sum(1 for v in visits if v.flag(key))) for key, label in CHECKLIST_FLAGS]


def other_requirements_split(visits: Iterable[Visit]) -> List[list]:
    visits = list(visits)
    extra = sum(1 for v in visits if v.flag("otros"))
    return [[OTHER_REQUESTS, extra], [SCHEDULED, len(visits) - extra]]


def by_requester(visits: Iterable[Visit]) -> List[Tuple[str, int]]:
    """Visits per requester, busiest first, ties alphabetical."""
    counts = Counter(v.requester_name for v in visits)
    return sorted(counts.items(), key=lambda kv: (-kv[1], kv[0].casefold(), kv[0]))


# (header pair, rows) for the four summary blocks, left to right
SummaryBlock = Tuple[Tuple[str, str], Sequence[Sequence]]


def summary_blocks(visits: Iterable[Visit], tz: Optional[tzinfo] = None) -> List[SummaryBlock]:
    visits = list(visits)
    return [
        (("Fecha", "Visitas"), by_day(visits, tz)),
        (("Checklist", "Cantidad"), checklist_counts(visits)),
        (("Tipo", "Cantidad"), other_requirements_split(visits)),
        (("Solicitante", "Visitas"), by_requester(visits)),
    ]
