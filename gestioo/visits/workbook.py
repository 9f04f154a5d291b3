# gestioo/visits/workbook.py

"""
Visit workbook export.

Layout contract:
  * ``Resumen``: four (label, count) blocks anchored at columns A, F, K and P,
    header on row 1 and data from row 2.
  * ``Hoja1``: the same four blocks, for older spreadsheets that read them
    from there.
  * one detail sheet per company with a fixed 19-column header.

A template may be supplied from a list of candidate paths or URLs. It is only
used if it really is an OOXML archive; otherwise the same layout is built
from scratch.
"""

import io
import logging
import re
import zipfile
from datetime import date, datetime, tzinfo
from typing import Iterable, List, Optional, Sequence, Set, Tuple
from zoneinfo import ZoneInfo

import requests
from openpyxl import Workbook, load_workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from openpyxl.utils.exceptions import InvalidFileException
from openpyxl.worksheet.worksheet import Worksheet

from gestioo.errors import ExportError
from gestioo.visits.aggregation import SummaryBlock, summary_blocks
from gestioo.visits.models import CHECKLIST_FLAGS, CLASSIC_FLAGS, Visit

logger = logging.getLogger(__name__)

ZIP_SIGNATURE = b"PK\x03\x04"

SUMMARY_SHEET = "Resumen"
MIRROR_SHEET = "Hoja1"
ANCHORS = ("A", "F", "K", "P")
MAX_SHEET_NAME = 31
ILLEGAL_SHEET_CHARS = re.compile(r"[\\/?*\[\]:]")

DETAIL_HEADER = (
    ["ID", "Técnico", "Solicitante", "Inicio", "Fin", "Estado"]
    + [label for _, label in CLASSIC_FLAGS]
    + ["Detalle otros"]
    + [label for _, label in CHECKLIST_FLAGS]
)
DETAIL_WIDTHS = [8, 24, 26, 18, 18, 14] + [12] * 4 + [36] + [16] * 8

DATE_FORMAT = "dd-mm-yyyy"
DATETIME_FORMAT = "dd-mm-yyyy hh:mm"
COUNT_FORMAT = "0"

HEADER_FILL = PatternFill(start_color="0EA5E9", end_color="0EA5E9", fill_type="solid")
HEADER_FONT = Font(color="FFFFFF", bold=True)
ALT_FILL = PatternFill(start_color="F2F2F2", end_color="F2F2F2", fill_type="solid")
NO_FILL = PatternFill(fill_type=None)
THIN = Side(style="thin", color="BFBFBF")
THIN_BORDER = Border(left=THIN, right=THIN, top=THIN, bottom=THIN)
NO_BORDER = Border()


# ---------------------------------------------------------------------------
# template
# ---------------------------------------------------------------------------

def is_xlsx(payload: Optional[bytes]) -> bool:
    return bool(payload) and payload[:4] == ZIP_SIGNATURE


def _read_candidate(location: str, session: requests.Session, timeout: float) -> Optional[bytes]:
    if location.startswith(("http://", "https://")):
        r = session.get(location, timeout=timeout)
        if r.status_code != 200:
            logger.warning("template %s -> HTTP %s", location, r.status_code)
            return None
        return r.content
    with open(location, "rb") as fh:
        return fh.read()


def acquire_template(
    candidates: Iterable[str],
    session: Optional[requests.Session] = None,
    timeout: float = 10.0,
) -> Optional[bytes]:
    """First candidate whose payload is a real xlsx archive, or ``None``."""
    session = session or requests.Session()
    for location in candidates:
        try:
            payload = _read_candidate(location, session, timeout)
        except (requests.RequestException, OSError) as e:
            logger.warning("template %s unavailable: %s", location, e)
            continue
        if is_xlsx(payload):
            logger.info("using workbook template %s", location)
            return payload
        logger.warning("template %s is not an xlsx archive", location)
    return None


def _base_workbook(template: Optional[bytes]) -> Workbook:
    wb = None
    if is_xlsx(template):
        try:
            wb = load_workbook(io.BytesIO(template))
        except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
            logger.warning("template could not be opened, building blank workbook: %s", e)
    if wb is None:
        wb = Workbook()
        wb.active.title = SUMMARY_SHEET
    for title in (SUMMARY_SHEET, MIRROR_SHEET):
        if title not in wb.sheetnames:
            wb.create_sheet(title)
    return wb


# ---------------------------------------------------------------------------
# summary blocks
# ---------------------------------------------------------------------------

def _style_header(cell) -> None:
    cell.font = HEADER_FONT
    cell.fill = HEADER_FILL
    cell.border = THIN_BORDER
    cell.alignment = Alignment(horizontal="center", vertical="center")


def write_block(ws: Worksheet, anchor: str, block: SummaryBlock) -> None:
    """Write one (label, count) block with its header at ``anchor``1."""
    (label_header, count_header), rows = block
    col = ws[f"{anchor}1"].column
    for offset, title in enumerate((label_header, count_header)):
        _style_header(ws.cell(row=1, column=col + offset, value=title))

    for r, (label, count) in enumerate(rows, start=2):
        label_cell = ws.cell(row=r, column=col, value=label)
        count_cell = ws.cell(row=r, column=col + 1, value=count)
        label_cell.border = count_cell.border = THIN_BORDER
        label_cell.fill = count_cell.fill = NO_FILL
        label_cell.number_format = DATE_FORMAT if isinstance(label, (date, datetime)) else "General"
        count_cell.number_format = COUNT_FORMAT

    # leftovers from a template or a previous, longer export
    for r in range(len(rows) + 2, ws.max_row + 1):
        for c in (col, col + 1):
            cell = ws.cell(row=r, column=c)
            cell.value = None
            cell.border = NO_BORDER
            cell.fill = NO_FILL
            cell.number_format = "General"

    ws.column_dimensions[get_column_letter(col)].width = 28
    ws.column_dimensions[get_column_letter(col + 1)].width = 11


def populate_summary(ws: Worksheet, blocks: Sequence[SummaryBlock]) -> None:
    for anchor, block in zip(ANCHORS, blocks):
        write_block(ws, anchor, block)


# ---------------------------------------------------------------------------
# per-company sheets
# ---------------------------------------------------------------------------

def sheet_title(name: str, taken: Set[str]) -> str:
    """Legal, unique (case-insensitively) sheet title for ``name``.

    ``taken`` holds the lower-cased titles already in use and is updated.
    """
    base = ILLEGAL_SHEET_CHARS.sub("_", name or "").strip() or "Empresa"
    base = base[:MAX_SHEET_NAME]
    title = base
    n = 2
    while title.lower() in taken:
        suffix = f"_{n}"
        title = base[:MAX_SHEET_NAME - len(suffix)] + suffix
        n += 1
    taken.add(title.lower())
    return title


def _naive_local(dt: Optional[datetime], tz: Optional[tzinfo]) -> Optional[datetime]:
    # Excel has no timezone support
    if dt is None:
        return None
    if dt.tzinfo is not None:
        if tz is not None:
            dt = dt.astimezone(tz)
        dt = dt.replace(tzinfo=None)
    return dt


def _yes_no(value: bool) -> str:
    return "Sí" if value else "No"


def detail_row(visit: Visit, tz: Optional[tzinfo] = None) -> list:
    return (
        [
            visit.id,
            visit.technician,
            visit.requester_name,
            _naive_local(visit.start, tz),
            _naive_local(visit.end, tz),
            visit.status_label,
        ]
        + [_yes_no(visit.flag(key)) for key, _ in CLASSIC_FLAGS]
        + [visit.other_detail or ""]
        + [_yes_no(visit.flag(key)) for key, _ in CHECKLIST_FLAGS]
    )


def write_company_sheet(ws: Worksheet, visits: Sequence[Visit], tz: Optional[tzinfo] = None) -> None:
    for c, title in enumerate(DETAIL_HEADER, start=1):
        _style_header(ws.cell(row=1, column=c, value=title))
        ws.column_dimensions[get_column_letter(c)].width = DETAIL_WIDTHS[c - 1]
    ws.freeze_panes = "A2"

    ordered = sorted(visits, key=lambda v: (v.start is None, _naive_local(v.start, tz) or datetime.min))
    for r, visit in enumerate(ordered, start=2):
        shaded = r % 2 == 1
        for c, value in enumerate(detail_row(visit, tz), start=1):
            cell = ws.cell(row=r, column=c, value=value)
            cell.border = THIN_BORDER
            if shaded:
                cell.fill = ALT_FILL
        ws.cell(row=r, column=4).number_format = DATETIME_FORMAT
        ws.cell(row=r, column=5).number_format = DATETIME_FORMAT


def group_by_company(visits: Iterable[Visit]) -> List[Tuple[str, List[Visit]]]:
    groups = {}
    for v in visits:
        groups.setdefault(v.company, []).append(v)
    return sorted(groups.items(), key=lambda kv: kv[0].casefold())


# ---------------------------------------------------------------------------
# entry points
# ---------------------------------------------------------------------------

def build_workbook(
    visits: Sequence[Visit],
    tz: Optional[tzinfo] = None,
    template: Optional[bytes] = None,
) -> Workbook:
    visits = list(visits)
    wb = _base_workbook(template)
    blocks = summary_blocks(visits, tz)
    populate_summary(wb[SUMMARY_SHEET], blocks)
    populate_summary(wb[MIRROR_SHEET], blocks)

    taken = {name.lower() for name in wb.sheetnames}
    for company, rows in group_by_company(visits):
        ws = wb.create_sheet(sheet_title(company, taken))
        write_company_sheet(ws, rows, tz)
    wb.active = wb.sheetnames.index(SUMMARY_SHEET)
    return wb


def export_filename(now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    return f"Visitas_{now:%Y%m%d_%H%M%S}.xlsx"


def export_visits(
    visits: Sequence[Visit],
    timezone: str = "America/Santiago",
    candidates: Iterable[str] = (),
    session: Optional[requests.Session] = None,
    now: Optional[datetime] = None,
) -> Tuple[bytes, str]:
    """Serialized workbook and its download name.

    An unusable template only downgrades to the built-in layout; any other
    failure is logged and reported as :class:`ExportError`.
    """
    try:
        tz = ZoneInfo(timezone)
        template = acquire_template(candidates, session=session)
        wb = build_workbook(visits, tz, template)
        buf = io.BytesIO()
        wb.save(buf)
    except Exception as e:
        logger.exception("visit workbook export failed (%d visits)", len(visits))
        raise ExportError() from e
    logger.info("exported %d visits", len(visits))
    return buf.getvalue(), export_filename(now or datetime.now(tz))
