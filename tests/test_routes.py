import copy

import pytest

from gestioo import create_app
from gestioo.api import client as api
from gestioo.errors import ApiError
from gestioo.quotations import routes as q_routes
from gestioo.visits import workbook as wbmod
from gestioo.visits.routes import XLSX_MIMETYPE


class FakeClient:
    def __init__(self, quotation, error=None):
        self.quotation = copy.deepcopy(quotation)
        self.error = error
        self.created = []
        self.updated = []
        self.searches = []
        self.visit_params = []

    def get_quotation(self, quotation_id):
        if self.error:
            raise self.error
        return dict(self.quotation, id=quotation_id)

    def create_quotation(self, payload):
        self.created.append(payload)
        return dict(payload, id=500)

    def update_quotation(self, quotation_id, payload):
        if self.error:
            raise self.error
        self.updated.append((quotation_id, payload))
        return dict(payload, id=quotation_id)

    def search(self, resource, query=''):
        self.searches.append((resource, query))
        return [{'id': 1, 'nombre': query}]

    def visit_filters(self):
        return {'tecnicos': [{'id': 1, 'nombre': 'Rocío'}], 'empresas': []}

    def list_all_visits(self, params=None, page_size=200):
        self.visit_params.append((params, page_size))
        return [
            {'id_visita': 1, 'empresa': {'nombre': 'Acme'}, 'inicio': '2025-06-05T12:00:00Z'},
            {'id_visita': 2, 'empresa': {'nombre': 'Beta'}, 'otros': True},
        ]


@pytest.fixture
def fake(monkeypatch, quotation_data):
    client = FakeClient(quotation_data)
    monkeypatch.setattr(api, 'get_client', lambda: client)
    return client


@pytest.fixture
def app():
    return create_app('development')


@pytest.fixture
def http(app):
    return app.test_client()


def test_index(http):
    assert http.get('/').get_json() == {'status': 'ok', 'service': 'gestioo'}


def test_pdf_preview_is_inline(http, fake):
    resp = http.get('/quotations/123/pdf?mode=preview')
    assert resp.status_code == 200
    assert resp.mimetype == 'application/pdf'
    assert resp.headers['Content-Disposition'].startswith('inline')
    assert resp.data.startswith(b'%PDF')


def test_pdf_download_is_attachment(http, fake):
    resp = http.get('/quotations/123/pdf')
    assert resp.status_code == 200
    disposition = resp.headers['Content-Disposition']
    assert disposition.startswith('attachment')
    assert 'Cotizacion_COT-000123_Clnica_uoa_Ca.pdf' in disposition


def test_pdf_without_items(http, fake):
    fake.quotation['items'] = []
    resp = http.get('/quotations/123/pdf')
    assert resp.status_code == 400
    assert resp.get_json()['details'] == ['No hay items en esta cotización para generar el PDF']


def test_pdf_bad_mode(http, fake):
    assert http.get('/quotations/123/pdf?mode=print').status_code == 400


def test_upstream_errors(http, monkeypatch, quotation_data):
    missing = FakeClient(quotation_data, error=ApiError(404, 'Cotización no encontrada'))
    monkeypatch.setattr(api, 'get_client', lambda: missing)
    resp = http.get('/quotations/9/pdf')
    assert resp.status_code == 404
    assert resp.get_json() == {'error': 'Cotización no encontrada'}

    down = FakeClient(quotation_data, error=ApiError(503, 'caído'))
    monkeypatch.setattr(api, 'get_client', lambda: down)
    assert http.get('/quotations/9/pdf').status_code == 502


def test_duplicate(http, fake):
    resp = http.post('/quotations/123/duplicate')
    assert resp.status_code == 201
    payload = fake.created[0]
    assert payload['estado'] == 'BORRADOR'
    assert payload['comentariosCotizacion'].startswith('Entrega en bodega (Copia ')
    assert resp.get_json()['quotation']['id'] == 500


def test_change_state(http, fake):
    resp = http.post('/quotations/123/state', json={'estado': 'APROBADA'})
    assert resp.status_code == 200
    assert fake.updated[0][1]['estado'] == 'APROBADA'

    assert http.post('/quotations/123/state', json={'estado': 'ARCHIVADA'}).status_code == 400
    assert http.post('/quotations/123/state', json={}).status_code == 400


def test_save_validates_first(http, fake, quotation_data):
    doc = quotation_data
    resp = http.put('/quotations/123', json=doc)
    assert resp.status_code == 200
    assert fake.updated[0][0] == 123

    doc['items'] = []
    resp = http.put('/quotations/123', json=doc)
    assert resp.status_code == 400
    assert 'Debe agregar al menos un item' in resp.get_json()['details']
    assert len(fake.updated) == 1


def test_editor_add_discount(http, quotation_data):
    resp = http.post('/quotations/editor', json={
        'document': quotation_data,
        'action': 'add_item',
        'args': {'kind': 'ADICIONAL'},
    })
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['document']['items'][-1]['tipo'] == 'ADICIONAL'
    assert body['lines'][-1]['is_adjustment'] is True
    assert body['lines'][-1]['margin'] is None
    assert body['lines'][0]['margin']['amount'] == 600
    assert body['totals']['total'] == 2980
    assert [s['id'] for s in body['sections']] == [1, 2]


def test_editor_rejects_unknown_action(http, quotation_data):
    resp = http.post('/quotations/editor', json={'document': quotation_data, 'action': 'explode'})
    assert resp.status_code == 400
    resp = http.post('/quotations/editor', json={
        'document': quotation_data, 'action': 'add_item', 'args': {'colour': 'red'},
    })
    assert resp.status_code == 400


def test_search(http, fake):
    resp = http.get('/quotations/search?resource=productos&q=mouse&key=editor-1')
    body = resp.get_json()
    assert body == {'resource': 'productos', 'q': 'mouse', 'stale': False,
                    'results': [{'id': 1, 'nombre': 'mouse'}]}
    assert http.get('/quotations/search?resource=bodegas').status_code == 400


def test_search_superseded_response_is_stale(http, fake, monkeypatch):
    def racing_search(resource, query=''):
        # a newer request for the same key starts before this one returns
        q_routes.search_sequence.begin('editor-2:productos')
        return [{'id': 1}]

    monkeypatch.setattr(fake, 'search', racing_search)
    body = http.get('/quotations/search?resource=productos&q=m&key=editor-2').get_json()
    assert body['stale'] is True
    assert body['results'] == []


def test_visit_filters(http, fake):
    assert http.get('/visits/filters').get_json()['tecnicos'][0]['nombre'] == 'Rocío'


def test_visit_export(http, fake):
    resp = http.get('/visits/export?q=acme&empresaId=4')
    assert resp.status_code == 200
    assert resp.mimetype == XLSX_MIMETYPE
    assert resp.headers['Content-Disposition'].startswith('attachment')
    assert 'Visitas_' in resp.headers['Content-Disposition']
    params, page_size = fake.visit_params[0]
    assert params['q'] == 'acme'
    assert params['empresaId'] == '4'
    assert page_size == 200


def test_visit_export_failure(http, fake, monkeypatch):
    def broken(*a, **kw):
        raise RuntimeError('boom')

    monkeypatch.setattr(wbmod, 'build_workbook', broken)
    resp = http.get('/visits/export')
    assert resp.status_code == 500
    assert resp.get_json() == {'error': 'No se pudo generar el archivo'}


def test_cli_quote_pdf(app, fake, tmp_path):
    result = app.test_cli_runner().invoke(args=['gestioo', 'quote-pdf', '123', '-o', str(tmp_path)])
    assert result.exit_code == 0, result.output
    out = tmp_path / 'Cotizacion_COT-000123_Clnica_uoa_Ca.pdf'
    assert out.read_bytes().startswith(b'%PDF')


def test_cli_export_visits(app, fake, tmp_path):
    target = tmp_path / 'visitas.xlsx'
    result = app.test_cli_runner().invoke(
        args=['gestioo', 'export-visits', '--empresa-id', '4', '-o', str(target)])
    assert result.exit_code == 0, result.output
    assert target.read_bytes()[:2] == b'PK'
    assert fake.visit_params[0][0]['empresaId'] == 4


def test_editor_set_entity(http, quotation_data):
    resp = http.post('/quotations/editor', json={
        'document': quotation_data,
        'action': 'set_entity',
        'args': {'entity': {'id': 9, 'nombre': 'Otra SpA', 'origen': 'ECONNET'}},
    })
    entity = resp.get_json()['document']['entidad']
    assert entity['id'] == 9
    assert entity['origen'] == 'ECONNET'
    assert resp.get_json()['document']['entidadId'] == 9


def test_cli_search_prints_latest_query(app, fake):
    app.config['SEARCH_DEBOUNCE_MS'] = 60_000
    result = app.test_cli_runner().invoke(args=['gestioo', 'search', 'productos'],
                                          input='no\nnote\nnotebook\n')
    assert result.exit_code == 0, result.output
    assert fake.searches == [('productos', 'notebook')]
    assert "'notebook': 1 resultados" in result.output


def test_save_rejects_usd_without_positive_rate(http, fake, quotation_data):
    quotation_data.update(moneda='USD', tasaCambio=0)
    resp = http.put('/quotations/123', json=quotation_data)
    assert resp.status_code == 400
    assert resp.get_json()['details'] == ['La tasa de cambio debe ser mayor a 0']
    assert fake.updated == []


def test_save_rejects_unknown_currency(http, fake, quotation_data):
    quotation_data['moneda'] = 'EUR'
    resp = http.put('/quotations/123', json=quotation_data)
    assert resp.status_code == 400
    assert resp.get_json()['details'] == ['Moneda desconocida: EUR']
    assert fake.updated == []


def test_pdf_usd_without_positive_rate(http, fake):
    fake.quotation.update(moneda='USD', tasaCambio=-950)
    resp = http.get('/quotations/123/pdf')
    assert resp.status_code == 400
    assert resp.get_json()['details'] == ['La tasa de cambio debe ser mayor a 0']


@pytest.mark.parametrize('document, action, args', [
    ({'estado': 'ARCHIVADA'}, 'set_comment', {'comment': 'x'}),
    ({}, 'update_item', {'item_id': 1, 'unit_price': 'abc'}),
    ({}, 'update_item', {'item_id': 1, 'quantity': 'x'}),
    ({}, 'change_currency', {'currency': 'USD', 'rate': 'abc'}),
    ({}, 'duplicate', {'today': 'mañana'}),
    ({'secciones': [{'id': 1, 'orden': 'primero'}]}, 'set_comment', {'comment': 'x'}),
])
def test_editor_bad_values_are_client_errors(http, quotation_data, document, action, args):
    quotation_data.update(document)
    resp = http.post('/quotations/editor', json={
        'document': quotation_data, 'action': action, 'args': args,
    })
    assert resp.status_code == 400
    assert resp.get_json()['details']
