import io
import re
from datetime import date, datetime
from zoneinfo import ZoneInfo

import pytest
import requests
from openpyxl import Workbook, load_workbook

from gestioo.errors import ExportError
from gestioo.visits import workbook as wbmod
from gestioo.visits.models import Visit
from gestioo.visits.workbook import (
    ALT_FILL,
    DETAIL_HEADER,
    acquire_template,
    build_workbook,
    export_visits,
    sheet_title,
)

SANTIAGO = ZoneInfo('America/Santiago')


def visits():
    rows = [
        {'id_visita': 1, 'empresa': {'nombre': 'Acme/Norte'}, 'tecnico': {'nombre': 'Rocío'},
         'inicio': '2025-06-05T02:30:00Z', 'fin': '2025-06-05T04:00:00Z', 'status': 'COMPLETADA',
         'otros': True, 'otrosDetalle': 'Cambio de toner', 'antivirus': True},
        {'id_visita': 2, 'empresa': {'nombre': 'Acme/Norte'}, 'inicio': '2025-06-06T14:00:00Z'},
        {'id_visita': 3, 'empresa': {'nombre': 'Acme?Norte'}, 'inicio': '2025-06-06T15:00:00Z'},
        {'id_visita': 4, 'empresa': {'nombre': 'Beta'}},
    ]
    return [Visit.from_api(r) for r in rows]


def xlsx_bytes(wb):
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


class DummyResponse:
    def __init__(self, status_code, content=b''):
        self.status_code = status_code
        self.content = content


class DummySession:
    def __init__(self, routes):
        self.routes = routes

    def get(self, url, timeout=None):
        r = self.routes[url]
        if isinstance(r, Exception):
            raise r
        return r


def test_sheet_title_sanitizes_and_dedupes():
    taken = {'resumen', 'hoja1'}
    assert sheet_title('Acme/Norte', taken) == 'Acme_Norte'
    assert sheet_title('Acme?Norte', taken) == 'Acme_Norte_2'
    assert sheet_title('ACME:NORTE', taken) == 'ACME_NORTE_3'
    assert sheet_title('Resumen', taken) == 'Resumen_2'
    assert sheet_title('', taken) == 'Empresa'


def test_sheet_title_respects_length_limit():
    taken = set()
    long_name = 'Servicios Integrales de Tecnología del Norte'
    first = sheet_title(long_name, taken)
    second = sheet_title(long_name, taken)
    assert len(first) == 31
    assert len(second) == 31
    assert second.endswith('_2')
    assert first != second


def test_build_workbook_layout():
    wb = build_workbook(visits(), SANTIAGO)
    assert wb.sheetnames[:2] == ['Resumen', 'Hoja1']
    assert wb.sheetnames[2:] == ['Acme_Norte', 'Acme_Norte_2', 'Beta']
    assert wb.active.title == 'Resumen'

    for name in ('Resumen', 'Hoja1'):
        ws = wb[name]
        assert [ws['A1'].value, ws['F1'].value, ws['K1'].value, ws['P1'].value] == \
            ['Fecha', 'Checklist', 'Tipo', 'Solicitante']
        assert ws['K2'].value == 'Solicitudes adicionales'
        assert ws['L2'].value == 1
        assert ws['L3'].value == 3

    ws = wb['Resumen']
    assert ws['A2'].value == date(2025, 6, 4)
    assert ws['A2'].number_format == 'dd-mm-yyyy'
    assert ws['A4'].value == 'Sin fecha'
    assert ws['B4'].value == 1


def test_company_sheet_rows():
    wb = build_workbook(visits(), SANTIAGO)
    ws = wb['Acme_Norte']
    header = [c.value for c in ws[1]]
    assert header == DETAIL_HEADER
    assert len(header) == 19

    first = [c.value for c in ws[2]]
    assert first[0] == 1
    assert first[1] == 'Rocío'
    assert first[2] == 'Sin usuario'
    assert first[3] == datetime(2025, 6, 4, 22, 30)
    assert first[5] == 'Completada'
    assert first[DETAIL_HEADER.index('Otros')] == 'Sí'
    assert first[DETAIL_HEADER.index('Detalle otros')] == 'Cambio de toner'
    assert first[DETAIL_HEADER.index('Antivirus')] == 'Sí'
    assert first[DETAIL_HEADER.index('CCleaner')] == 'No'

    assert ws['A3'].fill.fgColor.rgb == ALT_FILL.fgColor.rgb
    assert ws['A2'].fill.fill_type is None


def test_template_stale_rows_are_cleared():
    template = Workbook()
    ws = template.active
    ws.title = 'Resumen'
    for r in range(1, 30):
        ws.cell(row=r, column=1, value=f'viejo {r}')
        ws.cell(row=r, column=2, value=r)
    template.create_sheet('Instrucciones')['A1'] = 'No modificar'

    wb = build_workbook(visits(), SANTIAGO, template=xlsx_bytes(template))
    ws = wb['Resumen']
    assert ws['A1'].value == 'Fecha'
    assert ws['A5'].value is None
    assert ws['B29'].value is None
    assert wb['Instrucciones']['A1'].value == 'No modificar'
    assert 'Hoja1' in wb.sheetnames


def test_acquire_template_skips_bad_candidates(tmp_path):
    html = tmp_path / 'plantilla.xlsx'
    html.write_bytes(b'<!doctype html><html></html>')
    good = xlsx_bytes(Workbook())
    session = DummySession({
        'https://cdn.test/404.xlsx': DummyResponse(404),
        'https://cdn.test/down.xlsx': requests.ConnectionError('down'),
        'https://cdn.test/ok.xlsx': DummyResponse(200, good),
    })
    candidates = [
        str(tmp_path / 'missing.xlsx'),
        str(html),
        'https://cdn.test/404.xlsx',
        'https://cdn.test/down.xlsx',
        'https://cdn.test/ok.xlsx',
    ]
    assert acquire_template(candidates, session=session) == good
    assert acquire_template(candidates[:4], session=session) is None


def test_export_visits():
    content, filename = export_visits(visits(), now=datetime(2025, 6, 5, 9, 30, 15))
    assert content[:4] == b'PK\x03\x04'
    assert filename == 'Visitas_20250605_093015.xlsx'
    wb = load_workbook(io.BytesIO(content))
    assert 'Beta' in wb.sheetnames


def test_export_visits_default_filename():
    _, filename = export_visits([])
    assert re.fullmatch(r'Visitas_\d{8}_\d{6}\.xlsx', filename)


def test_export_failure_is_generic(monkeypatch):
    def broken(*a, **kw):
        raise RuntimeError('disk full')

    monkeypatch.setattr(wbmod, 'build_workbook', broken)
    with pytest.raises(ExportError) as exc:
        export_visits(visits())
    assert exc.value.message == 'No se pudo generar el archivo'
