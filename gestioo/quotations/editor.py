# gestioo/quotations/editor.py

"""Editing operations over a :class:`~gestioo.quotations.models.Quotation`.

Each function takes a document and returns a new one; the input is never
mutated. This keeps the HTTP layer trivial: decode, apply, re-encode.
"""

from __future__ import annotations

import dataclasses
from datetime import date
from typing import Any, Dict, List, Optional

from gestioo.errors import ValidationError
from gestioo.quotations.models import (
    ITEM_CLASSES,
    Currency,
    DiscountItem,
    Entity,
    LineItem,
    Quotation,
    QuotationState,
    Section,
    to_display,
    to_local,
)
from gestioo.quotations import pricing
from gestioo.quotations.pricing import Totals, compute_totals

COPY_MARKER = "(Copia"
DISCOUNT_DEFAULT_NAME = "Descuento adicional"
DISCOUNT_DEFAULT_PERCENT = 10.0


def _next_id(values) -> int:
    return max((v.id for v in values if v.id is not None), default=0) + 1


def _resolve_section(doc: Quotation, section_id: Optional[int]) -> Optional[int]:
    return section_id if doc.section(section_id) is not None else None


def _number(value: Any, field: str, cast=float):
    try:
        return cast(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Valor numérico inválido para {field}: {value}")


# -- sections ---------------------------------------------------------------

def add_section(doc: Quotation, name: str | None = None, description: str = "") -> Quotation:
    new_id = _next_id(doc.sections)
    order = max((s.order for s in doc.sections), default=-1) + 1
    section = Section(
        id=new_id,
        name=(name or "").strip() or f"Sección {len(doc.sections) + 1}",
        description=description or "",
        order=order,
    )
    return dataclasses.replace(doc, sections=doc.sections + (section,))


def update_section(doc: Quotation, section_id: int, **changes: Any) -> Quotation:
    allowed = {"name", "description", "order"}
    unknown = set(changes) - allowed
    if unknown:
        raise ValidationError([f"Campo de sección desconocido: {k}" for k in sorted(unknown)])
    if doc.section(section_id) is None:
        raise ValidationError(f"La sección {section_id} no existe")
    sections = tuple(
        dataclasses.replace(s, **changes) if s.id == section_id else s
        for s in doc.sections
    )
    return dataclasses.replace(doc, sections=sections)


def items_in_section(doc: Quotation, section_id: int) -> List[LineItem]:
    """Items that ``remove_section`` would discard."""
    return [i for i in doc.items if i.section_id == section_id]


def remove_section(doc: Quotation, section_id: int) -> Quotation:
    """Drop a section together with its items.

    Refused when it is the last section. Callers that want to warn the user
    first should look at :func:`items_in_section`.
    """
    if doc.section(section_id) is None:
        raise ValidationError(f"La sección {section_id} no existe")
    if len(doc.sections) <= 1:
        raise ValidationError("La cotización debe tener al menos una sección")
    return dataclasses.replace(
        doc,
        sections=tuple(s for s in doc.sections if s.id != section_id),
        items=tuple(i for i in doc.items if i.section_id != section_id),
    )


# -- items ------------------------------------------------------------------

def add_item(doc: Quotation, kind: str, section_id: Optional[int] = None) -> Quotation:
    """Append a blank line of ``kind`` (``PRODUCTO``, ``SERVICIO`` or ``ADICIONAL``).

    Without an explicit section the item lands in the first section by order,
    or ungrouped when the document has none.
    """
    cls = ITEM_CLASSES.get(kind)
    if cls is None:
        raise ValidationError(f"Tipo de item desconocido: {kind}")
    if section_id is None:
        ordered = doc.ordered_sections()
        section_id = ordered[0].id if ordered else None
    kwargs: Dict[str, Any] = dict(
        id=_next_id(doc.items),
        section_id=_resolve_section(doc, section_id),
    )
    if cls is DiscountItem:
        kwargs.update(
            name=DISCOUNT_DEFAULT_NAME,
            discount_percent=DISCOUNT_DEFAULT_PERCENT,
            has_discount=True,
        )
    return dataclasses.replace(doc, items=doc.items + (cls(**kwargs),))


def update_item(doc: Quotation, item_id: int, **changes: Any) -> Quotation:
    """Apply field edits to one item.

    Editing ``unit_price`` re-derives ``local_price`` from the document's
    currency, and editing ``local_price`` re-derives ``unit_price``. On products,
    editing cost or markup re-prices the line from the two.
    """
    item = doc.item(item_id)
    if item is None:
        raise ValidationError(f"El item {item_id} no existe")
    names = {f.name for f in dataclasses.fields(item)} - {"id"}
    unknown = set(changes) - names
    if unknown:
        raise ValidationError([f"Campo de item desconocido: {k}" for k in sorted(unknown)])

    for field in ("unit_price", "local_price", "discount_percent"):
        if field in changes:
            changes[field] = _number(changes[field], field)
    for field in ("cost_price", "profit_percent"):
        if changes.get(field) is not None:
            changes[field] = _number(changes[field], field)
    if "quantity" in changes:
        changes["quantity"] = _number(changes["quantity"], "quantity", int)

    if "cost_price" in changes or "profit_percent" in changes:
        _reprice(item, changes)

    prices = {"unit_price", "local_price"} & set(changes)
    if prices and doc.currency is Currency.USD and doc.exchange_rate <= 0:
        raise ValidationError("La tasa de cambio debe ser mayor a 0")
    if "unit_price" in changes and "local_price" not in changes:
        changes["local_price"] = to_local(changes["unit_price"], doc.currency, doc.exchange_rate)
    elif "local_price" in changes:
        changes["unit_price"] = to_display(changes["local_price"], doc.currency, doc.exchange_rate)
    if "section_id" in changes:
        changes["section_id"] = _resolve_section(doc, changes["section_id"])

    # DiscountItem.__post_init__ pins quantity and tax again
    updated = dataclasses.replace(item, **changes)
    return dataclasses.replace(
        doc, items=tuple(updated if i.id == item_id else i for i in doc.items)
    )


def _reprice(item: LineItem, changes: Dict[str, Any]) -> None:
    """Keep price and markup consistent when cost or markup is edited."""
    cost = changes.get("cost_price", getattr(item, "cost_price", None))
    if not cost or "unit_price" in changes or "local_price" in changes:
        return
    markup = changes.get("profit_percent", item.profit_percent)
    if markup is not None:
        changes["local_price"] = pricing.price_with_profit(float(cost), float(markup))
    else:
        changes["profit_percent"] = pricing.profit_percent(float(cost), item.local_price)


def remove_item(doc: Quotation, item_id: int) -> Quotation:
    return dataclasses.replace(doc, items=tuple(i for i in doc.items if i.id != item_id))


# -- document ---------------------------------------------------------------

def change_currency(doc: Quotation, currency: Currency, rate: float | None = None) -> Quotation:
    """Switch the display currency.

    Displayed prices are always re-derived from the CLP shadow price, so
    switching back and forth never accumulates rounding error.
    """
    try:
        currency = Currency(currency)
    except ValueError:
        raise ValidationError(f"Moneda desconocida: {currency}")
    if currency is Currency.USD:
        if rate is None:
            rate = doc.exchange_rate
        rate = _number(rate, "rate")
        if rate <= 0:
            raise ValidationError("La tasa de cambio debe ser mayor a 0")
    else:
        rate = 1.0
    items = tuple(
        dataclasses.replace(i, unit_price=to_display(i.local_price, currency, rate))
        for i in doc.items
    )
    return dataclasses.replace(doc, currency=currency, exchange_rate=rate, items=items)


def set_state(doc: Quotation, state: QuotationState) -> Quotation:
    # any state may move to any other
    try:
        state = QuotationState(state)
    except ValueError:
        raise ValidationError(f"Estado desconocido: {state}")
    return dataclasses.replace(doc, state=state)


def set_entity(doc: Quotation, entity: Optional[Entity]) -> Quotation:
    return dataclasses.replace(doc, entity=entity)


def set_comment(doc: Quotation, comment: str) -> Quotation:
    return dataclasses.replace(doc, comment=comment or "")


def section_items(doc: Quotation, section_id: Optional[int]) -> List[LineItem]:
    """Items of one section; ``None`` selects the ungrouped ones."""
    return [i for i in doc.items if i.section_id == section_id]


def section_subtotal(doc: Quotation, section_id: Optional[int], local: bool = False) -> float:
    return compute_totals(section_items(doc, section_id), local=local).total


def totals(doc: Quotation, local: bool = False) -> Totals:
    return compute_totals(doc.items, local=local)


def duplicate(doc: Quotation, today: date | str | None = None) -> Quotation:
    """A new draft copy of ``doc``, with a dated copy marker on the comment.

    The marker is only appended once: a comment that already carries
    ``(Copia`` is kept as is.
    """
    if isinstance(today, str):
        try:
            today = date.fromisoformat(today)
        except ValueError:
            raise ValidationError(f"Fecha inválida: {today}")
    today = today or date.today()
    comment = doc.comment or ""
    if COPY_MARKER not in comment:
        comment = f"{comment} (Copia {today:%d/%m/%Y})".strip()
    return dataclasses.replace(
        doc,
        id=None,
        state=QuotationState.BORRADOR,
        comment=comment,
        created_at=None,
        updated_at=None,
    )


def to_api_payload(doc: Quotation) -> Dict[str, Any]:
    """Body for ``POST``/``PUT /cotizaciones``.

    The backend stores CLP only, so items carry their shadow price and the
    totals are computed from it.
    """
    t = totals(doc, local=True)
    return {
        "tipo": doc.kind.value,
        "estado": doc.state.value,
        "entidadId": doc.entity_id,
        "moneda": doc.currency.value,
        "tasaCambio": doc.exchange_rate if doc.currency is Currency.USD else 1,
        "subtotal": round(t.subtotal, 2),
        "descuentos": round(t.discounts, 2),
        "iva": round(t.tax, 2),
        "total": round(t.total, 2),
        "comentariosCotizacion": (doc.comment or "").strip() or None,
        "personaResponsable": doc.responsible or None,
        "secciones": [s.to_api() for s in doc.ordered_sections()],
        "items": [i.to_api() for i in doc.items],
    }


def serialize(doc: Quotation) -> Dict[str, Any]:
    """Full document in the backend's JSON shape; ``Quotation.from_api`` reads it back."""
    body = to_api_payload(doc)
    body.update(
        id=doc.id,
        entidad=doc.entity.to_api() if doc.entity else None,
        createdAt=doc.created_at,
        updatedAt=doc.updated_at,
        items=[dict(i.to_api(), id=i.id) for i in doc.items],
    )
    return body
