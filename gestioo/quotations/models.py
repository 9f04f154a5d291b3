# gestioo/quotations/models.py

"""Immutable quotation document as read from and written to the REST API.

Prices live twice on every line item: ``unit_price`` is what the user sees in
the quotation's current currency and ``local_price`` is the same price in CLP.
The CLP value is the one that survives currency switches; the displayed value
is always derived from it, never the other way round except when the user
types a new displayed price.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Optional, Tuple

from gestioo.errors import ValidationError


class Currency(str, enum.Enum):
    CLP = "CLP"
    USD = "USD"


class QuotationState(str, enum.Enum):
    BORRADOR = "BORRADOR"
    GENERADA = "GENERADA"
    ENVIADA = "ENVIADA"
    APROBADA = "APROBADA"
    RECHAZADA = "RECHAZADA"


class QuotationKind(str, enum.Enum):
    CLIENTE = "CLIENTE"
    INTERNA = "INTERNA"
    PROVEEDOR = "PROVEEDOR"


class Origin(str, enum.Enum):
    RIDS = "RIDS"
    ECONNET = "ECONNET"
    OTRO = "OTRO"


STATE_LABELS = {
    QuotationState.BORRADOR: "Borrador",
    QuotationState.GENERADA: "Generada",
    QuotationState.ENVIADA: "Enviada",
    QuotationState.APROBADA: "Aprobada",
    QuotationState.RECHAZADA: "Rechazada",
}

KIND_LABELS = {
    QuotationKind.CLIENTE: "Cliente",
    QuotationKind.INTERNA: "Interna",
    QuotationKind.PROVEEDOR: "Proveedor",
}


def state_label(state: QuotationState) -> str:
    return STATE_LABELS[QuotationState(state)]


def kind_label(kind: QuotationKind) -> str:
    return KIND_LABELS[QuotationKind(kind)]


def to_display(local_price: float, currency: Currency, rate: float) -> float:
    """CLP shadow price -> price shown in ``currency`` (unrounded)."""
    if Currency(currency) is Currency.USD:
        return local_price / rate
    return local_price


def to_local(displayed_price: float, currency: Currency, rate: float) -> float:
    """Displayed price -> CLP."""
    if Currency(currency) is Currency.USD:
        return displayed_price * rate
    return displayed_price


def _float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _int(value: Any, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _optional_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return _float(value)


def _member(enum_cls, value: Any, default: str, message: str):
    try:
        return enum_cls(value or default)
    except ValueError:
        raise ValidationError(f"{message}: {value}")


def _exchange_rate(value: Any) -> float:
    # only a missing rate defaults; 0 or negative is left for validation
    if value is None or value == "":
        return 1.0
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Tasa de cambio inválida: {value}")


@dataclass(frozen=True)
class Entity:
    id: Optional[int]
    name: str = ""
    rut: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    origin: Optional[Origin] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any] | None) -> Optional["Entity"]:
        if not data:
            return None
        origin = data.get("origen")
        return cls(
            id=data.get("id"),
            name=(data.get("nombre") or "").strip(),
            rut=data.get("rut"),
            email=data.get("correo"),
            phone=data.get("telefono"),
            address=data.get("direccion"),
            origin=Origin(origin) if origin in Origin.__members__ else None,
        )

    def to_api(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "nombre": self.name,
            "rut": self.rut,
            "correo": self.email,
            "telefono": self.phone,
            "direccion": self.address,
            "origen": self.origin.value if self.origin else None,
        }


@dataclass(frozen=True)
class Section:
    id: int
    name: str
    description: str = ""
    order: int = 0

    @classmethod
    def from_api(cls, data: Dict[str, Any], position: int) -> "Section":
        return cls(
            id=int(data.get("id") or position + 1),
            name=data.get("nombre") or f"Sección {position + 1}",
            description=data.get("descripcion") or "",
            order=int(data.get("orden") or 0),
        )

    def to_api(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "nombre": self.name,
            "descripcion": self.description,
            "orden": self.order,
        }


@dataclass(frozen=True)
class LineItem:
    """Fields common to every kind of quotation line."""

    kind: ClassVar[str] = ""

    id: int
    name: str = ""
    description: str = ""
    quantity: int = 1
    unit_price: float = 0.0
    local_price: float = 0.0
    discount_percent: float = 0.0
    has_discount: bool = False
    section_id: Optional[int] = None
    sku: Optional[str] = None
    image: Optional[str] = None
    has_tax: bool = False

    def to_api(self) -> Dict[str, Any]:
        return {
            "tipo": self.kind,
            "nombre": self.name,
            "descripcion": self.description,
            "cantidad": self.quantity,
            "precio": self.local_price,
            "precioOriginalCLP": self.local_price,
            "porcentaje": self.discount_percent or None,
            "tieneDescuento": self.has_discount,
            "tieneIVA": self.has_tax,
            "sku": self.sku or None,
            "seccionId": self.section_id,
            "imagen": self.image or None,
        }


@dataclass(frozen=True)
class ProductItem(LineItem):
    kind: ClassVar[str] = "PRODUCTO"

    cost_price: Optional[float] = None
    profit_percent: Optional[float] = None
    product_id: Optional[int] = None

    def to_api(self) -> Dict[str, Any]:
        payload = super().to_api()
        payload.update(
            precioCosto=self.cost_price,
            porcGanancia=self.profit_percent,
            productoId=self.product_id,
        )
        return payload


@dataclass(frozen=True)
class ServiceItem(LineItem):
    kind: ClassVar[str] = "SERVICIO"

    profit_percent: Optional[float] = None
    service_id: Optional[int] = None

    def to_api(self) -> Dict[str, Any]:
        payload = super().to_api()
        payload.update(porcGanancia=self.profit_percent, servicioId=self.service_id)
        return payload


@dataclass(frozen=True)
class DiscountItem(LineItem):
    """Ad-hoc discount adjustment. Quantity is always 1, no tax, no profit."""

    kind: ClassVar[str] = "ADICIONAL"

    def __post_init__(self) -> None:
        object.__setattr__(self, "quantity", 1)
        object.__setattr__(self, "has_tax", False)


ITEM_CLASSES = {cls.kind: cls for cls in (ProductItem, ServiceItem, DiscountItem)}


def item_from_api(
    data: Dict[str, Any],
    currency: Currency,
    rate: float,
    section_ids: frozenset,
    position: int = 0,
) -> LineItem:
    """Build a typed line item from its JSON shape.

    The backend stores prices in CLP. A section reference that does not point
    at one of ``section_ids`` is dropped so the item renders as ungrouped.
    """
    cls = ITEM_CLASSES.get(data.get("tipo") or "PRODUCTO", ProductItem)
    local = data.get("precioOriginalCLP")
    local_price = _float(local if local is not None else data.get("precio"))
    section_id = data.get("seccionId")
    if section_id not in section_ids:
        section_id = None

    kwargs: Dict[str, Any] = dict(
        id=int(data.get("id") or position + 1),
        name=data.get("nombre") or "",
        description=data.get("descripcion") or "",
        quantity=_int(data.get("cantidad"), 1),
        unit_price=to_display(local_price, currency, rate) if rate > 0 else local_price,
        local_price=local_price,
        discount_percent=_float(data.get("porcentaje")),
        has_discount=bool(data.get("tieneDescuento")),
        section_id=section_id,
        sku=data.get("sku") or None,
        image=data.get("imagen") or None,
    )
    if cls is ProductItem:
        kwargs.update(
            has_tax=bool(data.get("tieneIVA")),
            cost_price=_optional_float(data.get("precioCosto")),
            profit_percent=_optional_float(data.get("porcGanancia")),
            product_id=data.get("productoId"),
        )
    elif cls is ServiceItem:
        kwargs.update(
            has_tax=bool(data.get("tieneIVA")),
            profit_percent=_optional_float(data.get("porcGanancia")),
            service_id=data.get("servicioId"),
        )
    return cls(**kwargs)


@dataclass(frozen=True)
class Quotation:
    id: Optional[int] = None
    entity: Optional[Entity] = None
    state: QuotationState = QuotationState.BORRADOR
    kind: QuotationKind = QuotationKind.CLIENTE
    currency: Currency = Currency.CLP
    exchange_rate: float = 1.0
    comment: str = ""
    responsible: Optional[str] = None
    sections: Tuple[Section, ...] = ()
    items: Tuple[LineItem, ...] = ()
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def entity_id(self) -> Optional[int]:
        return self.entity.id if self.entity else None

    @property
    def code(self) -> str:
        return f"COT-{(self.id or 0):06d}"

    def ordered_sections(self) -> list:
        """Sections by order index; equal indexes keep input order."""
        return sorted(self.sections, key=lambda s: s.order)

    def section(self, section_id: int) -> Optional[Section]:
        return next((s for s in self.sections if s.id == section_id), None)

    def item(self, item_id: int) -> Optional[LineItem]:
        return next((i for i in self.items if i.id == item_id), None)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Quotation":
        currency = _member(Currency, data.get("moneda"), "CLP", "Moneda desconocida")
        rate = 1.0
        if currency is Currency.USD:
            rate = _exchange_rate(data.get("tasaCambio"))
        sections = tuple(
            Section.from_api(s, pos) for pos, s in enumerate(data.get("secciones") or [])
        )
        section_ids = frozenset(s.id for s in sections)
        items = tuple(
            item_from_api(i, currency, rate, section_ids, pos)
            for pos, i in enumerate(data.get("items") or [])
        )
        entity = Entity.from_api(data.get("entidad"))
        if entity is None and data.get("entidadId"):
            entity = Entity(id=data["entidadId"])
        return cls(
            id=data.get("id"),
            entity=entity,
            state=_member(QuotationState, data.get("estado"), "BORRADOR", "Estado desconocido"),
            kind=_member(QuotationKind, data.get("tipo"), "CLIENTE", "Tipo de cotización desconocido"),
            currency=currency,
            exchange_rate=rate,
            comment=data.get("comentariosCotizacion") or "",
            responsible=data.get("personaResponsable"),
            sections=sections,
            items=items,
            created_at=data.get("createdAt"),
            updated_at=data.get("updatedAt"),
        )
