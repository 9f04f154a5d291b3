# gestioo/visits/models.py

"""Read-only snapshot of a technician visit as returned by ``/visitas``."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


class VisitStatus(str, enum.Enum):
    PENDIENTE = "PENDIENTE"
    EN_PROGRESO = "EN_PROGRESO"
    COMPLETADA = "COMPLETADA"
    CANCELADA = "CANCELADA"


STATUS_LABELS = {
    VisitStatus.PENDIENTE: "Pendiente",
    VisitStatus.EN_PROGRESO: "En progreso",
    VisitStatus.COMPLETADA: "Completada",
    VisitStatus.CANCELADA: "Cancelada",
}

# (API key, column label), in export order
CLASSIC_FLAGS = [
    ("confImpresoras", "Impresoras"),
    ("confTelefonos", "Teléfonos"),
    ("confPiePagina", "Pie de página"),
    ("otros", "Otros"),
]

CHECKLIST_FLAGS = [
    ("rendimientoEquipo", "Rendimiento del equipo"),
    ("ccleaner", "CCleaner"),
    ("actualizaciones", "Actualizaciones"),
    ("licenciaOffice", "Licencia office"),
    ("antivirus", "Antivirus"),
    ("licenciaWindows", "Licencia Windows"),
    ("estadoDisco", "Estado del disco"),
    ("mantenimientoReloj", "Mantenimiento del reloj"),
]

NO_REQUESTER = "Sin usuario"
NO_COMPANY = "Sin empresa"


def parse_timestamp(value: Any) -> Optional[datetime]:
    """ISO-8601 string -> datetime. A trailing ``Z`` is read as UTC."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


@dataclass(frozen=True)
class Visit:
    id: Optional[int]
    company: str = NO_COMPANY
    technician: str = ""
    requester: str = ""
    requester_ref: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    status: Optional[VisitStatus] = None
    flags: Dict[str, bool] = field(default_factory=dict)
    other_detail: Optional[str] = None

    @property
    def requester_name(self) -> str:
        """Linked requester, else the free-text name, else a placeholder."""
        return (self.requester_ref or "").strip() or (self.requester or "").strip() or NO_REQUESTER

    @property
    def status_label(self) -> str:
        return STATUS_LABELS.get(self.status, "") if self.status else ""

    def flag(self, key: str) -> bool:
        return bool(self.flags.get(key))

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Visit":
        empresa = data.get("empresa") or {}
        tecnico = data.get("tecnico") or {}
        ref = data.get("solicitanteRef") or {}
        keys = [k for k, _ in CLASSIC_FLAGS + CHECKLIST_FLAGS]
        flags = {k: bool(data.get(k)) for k in keys}
        status = data.get("status")
        return cls(
            id=data.get("id_visita") or data.get("id"),
            company=(empresa.get("nombre") or "").strip() or NO_COMPANY,
            technician=(tecnico.get("nombre") or "").strip(),
            requester=(data.get("solicitante") or "").strip(),
            requester_ref=(ref.get("nombre") or None),
            start=parse_timestamp(data.get("inicio")),
            end=parse_timestamp(data.get("fin")),
            status=VisitStatus(status) if status in VisitStatus.__members__ else None,
            flags=flags,
            # detail only means something when the flag is set
            other_detail=(data.get("otrosDetalle") or None) if flags["otros"] else None,
        )
