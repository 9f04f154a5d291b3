"""Issuer identities printed on exported documents."""
import os
from dataclasses import dataclass, replace
from typing import Optional

from gestioo.quotations.models import Entity, Origin


@dataclass(frozen=True)
class Branding:
    name: str
    address: str
    email: str
    phone: str
    rut: str
    logo: Optional[str] = None


BRANDS = {
    Origin.RIDS: Branding(
        name="RIDS LTDA",
        address="Santiago - Providencia, La Concepción 65",
        email="soporte@rids.cl",
        phone="+56 9 8823 1976",
        rut="76.758.352-4",
        logo="splash.png",
    ),
    Origin.ECONNET: Branding(
        name="ECONNET SPA",
        address="Santiago - Providencia, La Concepción 65",
        email="ventas@econnet.cl",
        phone="+56 9 8807 6593",
        rut="76.758.352-4",
        logo="ecconetlogo.png",
    ),
}

PAYMENT_TERMS = [
    ("Pago por transferencia electrónica o depósito", None),
    ("Tiempo de validez:", "5 días"),
    ("Tiempo de entrega:", "5 días hábiles"),
    ("Banco:", "Itaú · Cuenta Corriente: 0213150814 · RUT: 76.758.352-4"),
    ("Correo de pagos:", "pagos@rids.cl"),
    ("Notas:", "Se inicia previa aceptación y abono del 50%."),
]


def branding_for(entity: Optional[Entity], logo_dir: str = "") -> Branding:
    """Letterhead for a customer.

    RIDS and ECONNET have fixed identities; anything else prints the entity's
    own data under the default logo.
    """
    origin = entity.origin if entity and entity.origin else Origin.OTRO
    brand = BRANDS.get(origin)
    if brand is None:
        brand = Branding(
            name=(entity.name if entity and entity.name else "Empresa"),
            address=(entity.address if entity else None) or "",
            email=(entity.email if entity else None) or "",
            phone=(entity.phone if entity else None) or "",
            rut=(entity.rut if entity else None) or "",
            logo="splash.png",
        )
    logo = None
    if logo_dir and brand.logo:
        path = os.path.join(logo_dir, brand.logo)
        if os.path.exists(path):
            logo = path
    return replace(brand, logo=logo)
