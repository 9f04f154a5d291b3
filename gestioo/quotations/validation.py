# gestioo/quotations/validation.py

"""Checks run before a quotation is saved or exported."""

import re
from typing import List, Optional

from gestioo.errors import ValidationError
from gestioo.quotations.models import Currency, Entity, Quotation

RATE_ERROR = "La tasa de cambio debe ser mayor a 0"

RUT_PATTERN = re.compile(r"^[0-9]{1,3}\.[0-9]{3}\.[0-9]{3}-[0-9Kk]$")


def _check_digit(body: str) -> str:
    total = 0
    factor = 2
    for digit in reversed(body):
        total += int(digit) * factor
        factor = 2 if factor == 7 else factor + 1
    expected = 11 - (total % 11)
    if expected == 11:
        return "0"
    if expected == 10:
        return "K"
    return str(expected)


def validate_rut(rut: Optional[str]) -> bool:
    """True for a dotted Chilean RUT (``12.345.678-5``) with a valid check digit."""
    if not rut or not RUT_PATTERN.match(rut):
        return False
    clean = re.sub(r"[^0-9kK]", "", rut).upper()
    return clean[-1] == _check_digit(clean[:-1])


def format_rut(rut: str) -> str:
    """Normalise any RUT spelling to ``12.345.678-K``."""
    clean = re.sub(r"^0+|[^0-9kK]+", "", rut or "").upper()
    if len(clean) <= 1:
        return clean
    body, dv = clean[:-1], clean[-1]
    groups = []
    while len(body) > 3:
        groups.insert(0, body[-3:])
        body = body[:-3]
    groups.insert(0, body)
    return f"{'.'.join(groups)}-{dv}"


def entity_errors(entity: Optional[Entity]) -> List[str]:
    errors = []
    if entity is None or not (entity.name or "").strip():
        errors.append("El nombre de la entidad es obligatorio")
    if entity is None or entity.origin is None:
        errors.append("El origen de la entidad es obligatorio")
    if entity is not None and entity.rut and not validate_rut(entity.rut):
        errors.append("El RUT de la entidad no es válido")
    return errors


def has_valid_rate(doc: Quotation) -> bool:
    return doc.currency is not Currency.USD or (doc.exchange_rate or 0) > 0


def quotation_errors(doc: Quotation) -> List[str]:
    errors = entity_errors(doc.entity)
    if not has_valid_rate(doc):
        errors.append(RATE_ERROR)
    if not doc.items:
        errors.append("Debe agregar al menos un item")
    for n, item in enumerate(doc.items, start=1):
        if not (item.description or "").strip() and not (item.name or "").strip():
            errors.append(f"Item {n}: La descripción es obligatoria")
        if item.quantity <= 0:
            errors.append(f"Item {n}: La cantidad debe ser mayor a 0")
        if item.unit_price < 0 or item.local_price < 0:
            errors.append(f"Item {n}: El precio no puede ser negativo")
    return errors


def validate_quotation(doc: Quotation) -> Quotation:
    """Raise :class:`ValidationError` listing every problem, else return ``doc``."""
    errors = quotation_errors(doc)
    if errors:
        raise ValidationError(errors)
    return doc
