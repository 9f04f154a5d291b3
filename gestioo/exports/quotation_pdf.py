"""
Quotation PDF
=============
Vector rendering of a quotation on A4 pages with reportlab.

The document is first laid out as a flat list of blocks (header, info boxes,
one table per section, totals, thumbnails, payment terms, comments). Each
block knows its height, so pagination is a pure function over that list:
blocks flow onto pages until one does not fit, table rows carry their
column header so it is repeated on continuation pages, and titles are kept
together with whatever follows them. Only then is anything drawn.

All amounts are computed from the CLP shadow price and formatted in the
quotation's display currency.
"""

import io
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from reportlab.lib.colors import Color, HexColor
from reportlab.lib.pagesizes import A4
from reportlab.lib.utils import ImageReader, simpleSplit
from reportlab.pdfbase.pdfmetrics import stringWidth
from reportlab.pdfgen import canvas

from gestioo.errors import ExportError, ValidationError
from gestioo.exports.branding import PAYMENT_TERMS, Branding, branding_for
from gestioo.exports.images import ImagePrefetcher
from gestioo.quotations.models import Currency, LineItem, Quotation, kind_label, state_label
from gestioo.quotations.pricing import compute_line, compute_totals, format_amount
from gestioo.quotations.validation import RATE_ERROR, format_rut, has_valid_rate

log = logging.getLogger(__name__)

PREVIEW = "preview"
DOWNLOAD = "download"
MODES = (PREVIEW, DOWNLOAD)

NO_ITEMS = "No hay items en esta cotización para generar el PDF"
NOT_APPLICABLE = "N/A"

# ── Page geometry (points, top-origin) ───────────────────────────────────────
PAGE_W, PAGE_H = A4
MARGIN_X = 36
MARGIN_TOP = 40
MARGIN_BOTTOM = 44
CONTENT_W = PAGE_W - 2 * MARGIN_X
BODY_H = PAGE_H - MARGIN_TOP - MARGIN_BOTTOM

# ── Colours ──────────────────────────────────────────────────────────────────
BLACK = HexColor("#000000")
GRAY = HexColor("#555555")
LIGHT = HexColor("#999999")
RULE = HexColor("#444444")
BORDER = HexColor("#d0d0d0")
HEAD_FILL = HexColor("#e9ecef")
ALT_ROW = Color(0.97, 0.97, 0.98)
CLIENT_FILL = HexColor("#f7f7f7")
CLIENT_BD = HexColor("#dddddd")
ISSUER_FILL = HexColor("#eef6ff")
ISSUER_BD = HexColor("#c7ddf8")
CODE_RED = HexColor("#b91c1c")
TOTAL_FILL = HexColor("#fff8e1")
TOTAL_BD = HexColor("#f5c02a")
PAY_FILL = HexColor("#fafafa")
PLACEHOLDER = HexColor("#f0f0f0")

FONT = "Helvetica"
BOLD = "Helvetica-Bold"

# (label, width, align)
COLUMNS = [
    ("Código", 50, "center"),
    ("Nombre", 143, "left"),
    ("P.Unitario", 55, "right"),
    ("Cant.", 30, "center"),
    ("Desc (%)", 38, "center"),
    ("Desc ($)", 50, "right"),
    ("IVA (%)", 35, "center"),
    ("IVA ($)", 55, "right"),
    ("Total", 67, "right"),
]
NAME_COL = 1
MAX_DESC_LINES = 3
THUMB = 80
THUMB_GAP = 10


def _fit(txt: str, font: str, size: float, width: float) -> str:
    """Trim ``txt`` with an ellipsis until it fits ``width``."""
    txt = txt or ""
    if stringWidth(txt, font, size) <= width:
        return txt
    while txt and stringWidth(txt + "…", font, size) > width:
        txt = txt[:-1]
    return txt + "…"


class Pen:
    """Canvas wrapper working in top-origin coordinates."""

    def __init__(self, c: canvas.Canvas) -> None:
        self.c = c

    @staticmethod
    def Y(top: float) -> float:
        return PAGE_H - top

    def text(self, x, top, txt, font=FONT, size=9, color=BLACK, align="left"):
        self.c.setFont(font, size)
        self.c.setFillColor(color)
        s = str(txt) if txt is not None else ""
        if align == "right":
            self.c.drawRightString(x, self.Y(top), s)
        elif align == "center":
            self.c.drawCentredString(x, self.Y(top), s)
        else:
            self.c.drawString(x, self.Y(top), s)

    def box(self, x, top, w, h, fill=None, stroke=BORDER, width=0.5):
        rl_y = self.Y(top) - h
        if fill is not None:
            self.c.setFillColor(fill)
            self.c.rect(x, rl_y, w, h, fill=1, stroke=0)
        if stroke is not None:
            self.c.setStrokeColor(stroke)
            self.c.setLineWidth(width)
            self.c.rect(x, rl_y, w, h, fill=0, stroke=1)

    def line(self, x1, top, x2, color=RULE, width=1.0):
        self.c.setStrokeColor(color)
        self.c.setLineWidth(width)
        self.c.line(x1, self.Y(top), x2, self.Y(top))

    def image(self, reader: ImageReader, x, top, w, h):
        self.c.drawImage(reader, x, self.Y(top) - h, width=w, height=h,
                         preserveAspectRatio=True, anchor="c", mask="auto")


# ═══════════════════════════════════════════════════════════════════════════════
# BLOCKS
# ═══════════════════════════════════════════════════════════════════════════════

class Block:
    height: float = 0.0
    # keep on the same page as the block that follows
    keep_with_next: bool = False
    # drawn first when this block opens a continuation page
    repeat: Optional["Block"] = None

    def draw(self, pen: Pen, top: float) -> None:
        raise NotImplementedError


class HeaderBlock(Block):
    height = 104

    def __init__(self, brand: Branding, doc: Quotation, printed_at: str) -> None:
        self.brand = brand
        self.code = doc.code
        self.printed_at = printed_at
        meta = [f"Estado: {state_label(doc.state)}", f"Tipo: {kind_label(doc.kind)}"]
        if doc.currency is Currency.USD:
            meta.append(f"Moneda: USD · Tasa: {format_amount(doc.exchange_rate, Currency.CLP)}")
        else:
            meta.append("Moneda: CLP")
        self.meta = " · ".join(meta)

    def draw(self, pen, top):
        x = MARGIN_X
        if self.brand.logo:
            try:
                img = ImageReader(self.brand.logo)
                iw, ih = img.getSize()
                scale = min(110 / iw, 56 / ih)
                pen.image(img, MARGIN_X, top, iw * scale, ih * scale)
                x = MARGIN_X + iw * scale + 12
            except Exception as e:
                log.warning("Logo load failed (%s): %s", self.brand.logo, e)

        pen.text(x, top + 14, self.brand.name, BOLD, 14)
        pen.text(x, top + 28, f"RUT: {self.brand.rut}", FONT, 9)
        pen.text(x, top + 40, self.brand.address, FONT, 9)
        pen.text(x, top + 52, f"{self.brand.email} · {self.brand.phone}", FONT, 9)
        pen.text(x, top + 66, f"Fecha impresión: {self.printed_at}", FONT, 8, GRAY)
        pen.text(x, top + 78, self.meta, FONT, 8, GRAY)

        bw = 160
        bx = MARGIN_X + CONTENT_W - bw
        pen.box(bx, top + 4, bw, 54, stroke=BLACK, width=1.5)
        cx = bx + bw / 2
        pen.text(cx, top + 20, f"R.U.T.: {self.brand.rut}", BOLD, 10, CODE_RED, "center")
        pen.text(cx, top + 34, "COTIZACIÓN", BOLD, 10, CODE_RED, "center")
        pen.text(cx, top + 50, f"N° {self.code}", BOLD, 11, CODE_RED, "center")

        pen.line(MARGIN_X, top + 92, MARGIN_X + CONTENT_W, width=2.5)


class InfoBoxesBlock(Block):
    ROW = 13

    def __init__(self, doc: Quotation, brand: Branding) -> None:
        e = doc.entity
        dash = "—"
        self.client = [
            ("Entidad:", (e.name if e else None) or dash),
            ("RUT:", format_rut(e.rut) if e and e.rut else dash),
            ("Correo:", (e.email if e else None) or dash),
            ("Teléfono:", (e.phone if e else None) or dash),
            ("Dirección:", (e.address if e else None) or dash),
            ("Origen:", (e.origin.value if e and e.origin else None) or dash),
        ]
        self.issuer = [
            ("Empresa:", brand.name),
            ("RUT:", brand.rut),
            ("Dirección:", brand.address),
            ("Correo:", brand.email),
            ("Teléfono:", brand.phone),
        ]
        self.box_h = 28 + len(self.client) * self.ROW + 6
        self.height = self.box_h + 18

    def _box(self, pen, x, top, w, title, rows, fill, stroke):
        pen.box(x, top, w, self.box_h, fill=fill, stroke=stroke, width=1)
        pen.text(x + 10, top + 18, title, BOLD, 11)
        y = top + 34
        for label, value in rows:
            pen.text(x + 10, y, label, BOLD, 9)
            lw = stringWidth(label, BOLD, 9) + 4
            pen.text(x + 10 + lw, y, _fit(value, FONT, 9, w - 24 - lw), FONT, 9)
            y += self.ROW

    def draw(self, pen, top):
        gap = 14
        w = (CONTENT_W - gap) / 2
        top += 8
        self._box(pen, MARGIN_X, top, w, "Datos del Cliente", self.client, CLIENT_FILL, CLIENT_BD)
        self._box(pen, MARGIN_X + w + gap, top, w, "Empresa (Origen)", self.issuer,
                  ISSUER_FILL, ISSUER_BD)


class TitleBlock(Block):
    keep_with_next = True

    def __init__(self, text: str, size: float = 14) -> None:
        self.text_ = text
        self.size = size
        self.height = size + 16

    def draw(self, pen, top):
        pen.text(MARGIN_X, top + self.size + 6, self.text_, BOLD, self.size, HexColor("#111111"))


class SectionHeadBlock(Block):
    keep_with_next = True

    def __init__(self, name: str, description: str = "") -> None:
        self.name = (name or "").upper()
        self.lines = simpleSplit(description or "", FONT, 9, CONTENT_W)[:MAX_DESC_LINES]
        self.height = 22 + len(self.lines) * 11

    def draw(self, pen, top):
        pen.text(MARGIN_X, top + 16, self.name, BOLD, 12)
        y = top + 28
        for line in self.lines:
            pen.text(MARGIN_X, y, line, FONT, 9, GRAY)
            y += 11


class ColumnHeaderBlock(Block):
    height = 20
    keep_with_next = True

    def draw(self, pen, top):
        x = MARGIN_X
        for label, w, _ in COLUMNS:
            pen.box(x, top, w, self.height, fill=HEAD_FILL)
            pen.text(x + w / 2, top + 13, label, BOLD, 7.5, align="center")
            x += w


class RowBlock(Block):
    def __init__(self, cells: Sequence[str], description: str, shaded: bool,
                 header: ColumnHeaderBlock) -> None:
        self.cells = list(cells)
        name_w = COLUMNS[NAME_COL][1] - 8
        self.desc = simpleSplit(description or "", FONT, 7, name_w)[:MAX_DESC_LINES]
        self.shaded = shaded
        self.repeat = header
        self.height = max(22, 14 + 9 * len(self.desc) + 6)

    def draw(self, pen, top):
        if self.shaded:
            pen.box(MARGIN_X, top, CONTENT_W, self.height, fill=ALT_ROW, stroke=None)
        x = MARGIN_X
        baseline = top + 13
        for i, (cell, (_, w, align)) in enumerate(zip(self.cells, COLUMNS)):
            pen.box(x, top, w, self.height)
            if i == NAME_COL:
                pen.text(x + 4, baseline, _fit(cell, BOLD, 8, w - 8), BOLD, 8)
                y = baseline + 10
                for line in self.desc:
                    pen.text(x + 4, y, line, FONT, 7, GRAY)
                    y += 9
            elif align == "right":
                pen.text(x + w - 4, baseline, _fit(cell, FONT, 8, w - 6), FONT, 8, align="right")
            else:
                pen.text(x + w / 2, baseline, _fit(cell, FONT, 8, w - 4), FONT, 8, align="center")
            x += w


class SectionFooterBlock(Block):
    height = 34

    def __init__(self, label: str, amount: str) -> None:
        self.label = label
        self.amount = amount

    def draw(self, pen, top):
        last_w = COLUMNS[-1][1]
        pen.box(MARGIN_X, top, CONTENT_W, 20, fill=HEAD_FILL)
        pen.text(MARGIN_X + CONTENT_W - last_w - 6, top + 13, self.label, BOLD, 8.5, align="right")
        pen.text(MARGIN_X + CONTENT_W - 4, top + 13, self.amount, BOLD, 8.5, align="right")


class TotalsBlock(Block):
    LINE = 13
    BANNER = 34

    def __init__(self, lines: Sequence[tuple], banner: str) -> None:
        self.lines = list(lines)
        self.banner = banner
        self.height = 12 + len(self.lines) * self.LINE + 8 + self.BANNER + 14

    def draw(self, pen, top):
        right = MARGIN_X + CONTENT_W
        y = top + 12
        for label, value in self.lines:
            y += self.LINE
            pen.text(right - 110, y, label, FONT, 9, GRAY, "right")
            pen.text(right - 8, y, value, FONT, 9, align="right")
        y += 8
        pen.box(MARGIN_X, y, CONTENT_W, self.BANNER, fill=TOTAL_FILL, stroke=TOTAL_BD, width=2)
        pen.text(right - 14, y + 22, self.banner, BOLD, 14, align="right")


class ThumbnailRowBlock(Block):
    height = THUMB + 12

    def __init__(self, images: Sequence[Optional[bytes]]) -> None:
        self.images = list(images)

    def draw(self, pen, top):
        x = MARGIN_X
        for data in self.images:
            drawn = False
            if data:
                try:
                    pen.image(ImageReader(io.BytesIO(data)), x, top, THUMB, THUMB)
                    drawn = True
                except Exception as e:
                    log.warning("thumbnail could not be drawn: %s", e)
            if not drawn:
                pen.box(x, top, THUMB, THUMB, fill=PLACEHOLDER, stroke=None)
                pen.text(x + THUMB / 2, top + THUMB / 2 + 3, "Sin imagen", FONT, 8, LIGHT, "center")
            pen.box(x, top, THUMB, THUMB, stroke=HexColor("#cccccc"))
            x += THUMB + THUMB_GAP


class PaymentBlock(Block):
    LINE = 15

    def __init__(self, terms=PAYMENT_TERMS) -> None:
        self.terms = list(terms)
        self.box_h = 14 + len(self.terms) * self.LINE + 6
        self.height = 24 + self.box_h

    def draw(self, pen, top):
        top += 24
        pen.box(MARGIN_X, top, CONTENT_W, self.box_h, fill=PAY_FILL, stroke=HexColor("#cccccc"), width=1)
        y = top + 18
        for label, value in self.terms:
            pen.text(MARGIN_X + 14, y, label, BOLD, 9.5)
            if value:
                pen.text(MARGIN_X + 18 + stringWidth(label, BOLD, 9.5), y, value, FONT, 9.5)
            y += self.LINE


class CommentsBlock(Block):
    MAX_LINES = 40

    def __init__(self, comment: str) -> None:
        self.box_w = CONTENT_W * 0.58
        text = (comment or "").strip() or "—"
        lines = []
        for para in text.splitlines() or [text]:
            lines.extend(simpleSplit(para, FONT, 9, self.box_w - 24) or [""])
        self.lines = lines[: self.MAX_LINES]
        self.box_h = max(60, 30 + len(self.lines) * 11 + 8)
        self.height = 36 + self.box_h

    def draw(self, pen, top):
        top += 36
        pen.box(MARGIN_X, top, self.box_w, self.box_h, fill=HexColor("#f9fafb"),
                stroke=HexColor("#d1d5db"), width=1)
        pen.text(MARGIN_X + 12, top + 18, "Comentarios de la cotización", BOLD, 10)
        y = top + 34
        for line in self.lines:
            pen.text(MARGIN_X + 12, y, line, FONT, 9)
            y += 11

        sig_w = 180
        sx = MARGIN_X + CONTENT_W - sig_w
        sy = top + self.box_h - 16
        pen.line(sx, sy, sx + sig_w, color=BLACK, width=1)
        pen.text(sx + sig_w / 2, sy + 12, "Firma y aclaración", FONT, 9, align="center")


# ═══════════════════════════════════════════════════════════════════════════════
# LAYOUT
# ═══════════════════════════════════════════════════════════════════════════════

def _row_cells(item: LineItem, doc: Quotation) -> List[str]:
    def fmt(v):
        return format_amount(v, doc.currency, doc.exchange_rate)

    values = compute_line(item, local=True)
    pct = f"{values.discount_percent:g}%"
    if values.is_adjustment:
        return [item.sku or "", item.name, fmt(item.local_price), "1", pct,
                fmt(values.reduction), NOT_APPLICABLE, NOT_APPLICABLE, NOT_APPLICABLE]
    return [
        item.sku or "",
        item.name,
        fmt(item.local_price),
        str(item.quantity),
        pct,
        fmt(values.discount_amount),
        "19%" if item.has_tax else "0%",
        fmt(values.tax_amount),
        fmt(values.line_total),
    ]


def _table(doc: Quotation, items: Sequence[LineItem]) -> List[Block]:
    header = ColumnHeaderBlock()
    rows: List[Block] = [header]
    for n, item in enumerate(items):
        rows.append(RowBlock(_row_cells(item, doc), item.description, n % 2 == 1, header))
    return rows


def layout(
    doc: Quotation,
    images: Optional[Dict[str, Optional[bytes]]] = None,
    brand: Optional[Branding] = None,
    printed_at: str = "",
) -> List[Block]:
    """Every block of the document, top to bottom."""
    images = images or {}
    brand = brand or branding_for(doc.entity)

    def fmt(v):
        return format_amount(v, doc.currency, doc.exchange_rate)

    blocks: List[Block] = [
        HeaderBlock(brand, doc, printed_at),
        InfoBoxesBlock(doc, brand),
        TitleBlock("Detalle de la cotización"),
    ]

    sections = doc.ordered_sections()
    for section in sections:
        items = [i for i in doc.items if i.section_id == section.id]
        if not items:
            continue
        blocks.append(SectionHeadBlock(section.name, section.description))
        blocks.extend(_table(doc, items))
        subtotal = compute_totals(items, local=True).total
        blocks.append(SectionFooterBlock(f"Total {section.name}:", fmt(subtotal)))

    ungrouped = [i for i in doc.items if i.section_id is None]
    if ungrouped:
        if sections:
            blocks.append(SectionHeadBlock("Ítems sin sección"))
        blocks.extend(_table(doc, ungrouped))
        if sections:
            subtotal = compute_totals(ungrouped, local=True).total
            blocks.append(SectionFooterBlock("Total sin sección:", fmt(subtotal)))

    totals = compute_totals(doc.items, local=True)
    blocks.append(TotalsBlock(
        [
            ("Subtotal bruto:", fmt(totals.gross_subtotal)),
            ("Descuentos:", fmt(totals.discounts)),
            ("Subtotal:", fmt(totals.subtotal)),
            ("IVA (19%):", fmt(totals.tax)),
        ],
        f"Total General: {fmt(totals.total)}",
    ))

    thumbs = [images.get(i.image) for i in doc.items if i.image]
    per_row = int((CONTENT_W + THUMB_GAP) // (THUMB + THUMB_GAP))
    for start in range(0, len(thumbs), per_row):
        blocks.append(ThumbnailRowBlock(thumbs[start:start + per_row]))

    blocks.append(PaymentBlock())
    blocks.append(CommentsBlock(doc.comment))
    return blocks


def _chain_height(blocks: Sequence[Block], i: int) -> float:
    """Height of block ``i`` plus every block it must stay with."""
    need = blocks[i].height
    while blocks[i].keep_with_next and i + 1 < len(blocks):
        i += 1
        need += blocks[i].height
    return need


def paginate(blocks: Sequence[Block], page_height: float = BODY_H) -> List[List[Block]]:
    """Flow ``blocks`` onto pages of ``page_height``.

    A block that does not fit opens a new page (unless the page is still
    empty, in which case it is placed anyway and overflows). A block with a
    ``repeat`` gets that block drawn above it on the new page.
    """
    pages: List[List[Block]] = [[]]
    remaining = page_height
    for i, block in enumerate(blocks):
        if _chain_height(blocks, i) > remaining and pages[-1]:
            pages.append([])
            remaining = page_height
            if block.repeat is not None:
                pages[-1].append(block.repeat)
                remaining -= block.repeat.height
        pages[-1].append(block)
        remaining -= block.height
    return pages


# ═══════════════════════════════════════════════════════════════════════════════
# RENDERING
# ═══════════════════════════════════════════════════════════════════════════════

def build_pdf(
    doc: Quotation,
    images: Optional[Dict[str, Optional[bytes]]] = None,
    brand: Optional[Branding] = None,
    printed_at: Optional[str] = None,
) -> bytes:
    if not doc.items:
        raise ValidationError(NO_ITEMS)
    brand = brand or branding_for(doc.entity)
    printed_at = printed_at or datetime.now().strftime("%d-%m-%Y %H:%M")
    pages = paginate(layout(doc, images, brand, printed_at))

    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    c.setTitle(f"Cotización {doc.code}")
    c.setAuthor(brand.name)
    pen = Pen(c)
    total = len(pages)
    for number, page in enumerate(pages, start=1):
        top = MARGIN_TOP
        for block in page:
            block.draw(pen, top)
            top += block.height
        c.setFillColor(GRAY)
        c.setFont(FONT, 8)
        c.drawString(MARGIN_X, 20, doc.code)
        c.drawRightString(MARGIN_X + CONTENT_W, 20, f"{number} / {total}")
        c.showPage()
    c.save()
    log.info("Rendered %s: %d items, %d pages", doc.code, len(doc.items), total)
    return buf.getvalue()


def pdf_filename(doc: Quotation) -> str:
    """``Cotizacion_COT-000123_<entity>.pdf`` with a filesystem-safe entity name."""
    name = doc.entity.name if doc.entity else ""
    name = re.sub(r"[^a-zA-Z0-9\-_ ]", "", name or "")
    name = re.sub(r"\s+", "_", name) or "Sin_Entidad"
    return f"Cotizacion_{doc.code}_{name}.pdf"


@dataclass(frozen=True)
class PdfOutput:
    content: bytes
    filename: str
    inline: bool

    @property
    def disposition(self) -> str:
        kind = "inline" if self.inline else "attachment"
        return f'{kind}; filename="{self.filename}"'


def export_quotation(
    doc: Quotation,
    prefetcher: Optional[ImagePrefetcher] = None,
    logo_dir: str = "",
    mode: str = DOWNLOAD,
    printed_at: Optional[str] = None,
) -> PdfOutput:
    """Prefetch images, render and package the PDF for ``mode``.

    Documents that cannot be rendered (no items, USD without a positive rate)
    and unknown modes are rejected before any work is done. Anything that goes
    wrong afterwards surfaces as :class:`ExportError`.
    """
    if mode not in MODES:
        raise ValidationError(f"Modo de salida desconocido: {mode}")
    if not doc.items:
        raise ValidationError(NO_ITEMS)
    if not has_valid_rate(doc):
        raise ValidationError(RATE_ERROR)
    try:
        images = prefetcher.prefetch(i.image for i in doc.items) if prefetcher else {}
        content = build_pdf(doc, images, branding_for(doc.entity, logo_dir), printed_at)
    except ValidationError:
        raise
    except Exception as e:
        log.exception("PDF export failed for %s", doc.code)
        raise ExportError() from e
    return PdfOutput(content=content, filename=pdf_filename(doc), inline=mode == PREVIEW)
