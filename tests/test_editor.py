import dataclasses
from datetime import date

import pytest

from gestioo.errors import ValidationError
from gestioo.quotations import editor
from gestioo.quotations.models import (
    Currency,
    DiscountItem,
    Quotation,
    QuotationState,
    ServiceItem,
)


def test_from_api_orders_sections_and_drops_orphan_reference(quotation):
    assert [s.name for s in quotation.ordered_sections()] == ['Equipos', 'Servicios']
    assert quotation.item(3).section_id is None
    assert quotation.item(1).section_id == 1
    assert quotation.code == 'COT-000123'


def test_zero_quantity_is_kept(quotation_data):
    quotation_data['items'][0]['cantidad'] = 0
    doc = Quotation.from_api(quotation_data)
    assert doc.item(1).quantity == 0


def test_add_item_defaults_to_first_section(quotation):
    doc = editor.add_item(quotation, 'SERVICIO')
    new = doc.items[-1]
    assert isinstance(new, ServiceItem)
    assert new.id == 4
    assert new.section_id == 1
    assert len(quotation.items) == 3


def test_add_discount_item_defaults(quotation):
    doc = editor.add_item(quotation, 'ADICIONAL', section_id=2)
    new = doc.items[-1]
    assert isinstance(new, DiscountItem)
    assert new.name == editor.DISCOUNT_DEFAULT_NAME
    assert new.discount_percent == 10
    assert new.has_discount
    assert new.section_id == 2


def test_add_item_unknown_kind(quotation):
    with pytest.raises(ValidationError):
        editor.add_item(quotation, 'KIT')


def test_update_item_rederives_local_price(quotation):
    usd = editor.change_currency(quotation, Currency.USD, 800)
    doc = editor.update_item(usd, 1, unit_price=2.5)
    assert doc.item(1).unit_price == 2.5
    assert doc.item(1).local_price == 2000

    doc = editor.update_item(doc, 1, local_price=4000)
    assert doc.item(1).unit_price == 5


def test_update_item_keeps_discount_quantity(quotation):
    doc = editor.add_item(quotation, 'ADICIONAL')
    doc = editor.update_item(doc, 4, quantity=7, has_tax=True)
    assert doc.item(4).quantity == 1
    assert doc.item(4).has_tax is False


def test_update_item_unknown_field(quotation):
    with pytest.raises(ValidationError):
        editor.update_item(quotation, 1, colour='red')


def test_move_item_to_missing_section_ungroups_it(quotation):
    doc = editor.update_item(quotation, 1, section_id=42)
    assert doc.item(1).section_id is None


def test_remove_section_drops_its_items(quotation):
    assert [i.id for i in editor.items_in_section(quotation, 2)] == [2]
    doc = editor.remove_section(quotation, 2)
    assert [s.id for s in doc.sections] == [1]
    assert [i.id for i in doc.items] == [1, 3]


def test_last_section_cannot_be_removed(quotation):
    doc = editor.remove_section(quotation, 2)
    with pytest.raises(ValidationError):
        editor.remove_section(doc, 1)


def test_add_and_rename_section(quotation):
    doc = editor.add_section(quotation)
    assert doc.sections[-1].id == 3
    assert doc.sections[-1].name == 'Sección 3'
    assert doc.ordered_sections()[-1].id == 3

    doc = editor.update_section(doc, 3, name='Licencias')
    assert doc.section(3).name == 'Licencias'
    with pytest.raises(ValidationError):
        editor.update_section(doc, 3, colour='red')


def test_currency_round_trip_is_exact(quotation):
    doc = editor.update_item(quotation, 2, unit_price=333.33)
    usd = editor.change_currency(doc, Currency.USD, 937.5)
    assert usd.exchange_rate == 937.5
    back = editor.change_currency(usd, Currency.CLP)
    assert back.exchange_rate == 1.0
    assert [i.unit_price for i in back.items] == [i.local_price for i in doc.items]


def test_change_currency_rejects_bad_input(quotation):
    with pytest.raises(ValidationError):
        editor.change_currency(quotation, Currency.USD, 0)
    with pytest.raises(ValidationError):
        editor.change_currency(quotation, 'EUR', 1)


def test_any_state_transition_is_allowed(quotation):
    doc = editor.set_state(quotation, 'APROBADA')
    doc = editor.set_state(doc, QuotationState.BORRADOR)
    assert doc.state is QuotationState.BORRADOR
    with pytest.raises(ValidationError):
        editor.set_state(doc, 'ARCHIVADA')


def test_duplicate_marks_comment_once(quotation):
    copy = editor.duplicate(quotation, today=date(2025, 6, 5))
    assert copy.id is None
    assert copy.state is QuotationState.BORRADOR
    assert copy.comment == 'Entrega en bodega (Copia 05/06/2025)'
    assert copy.items == quotation.items

    again = editor.duplicate(copy, today=date(2025, 7, 1))
    assert again.comment == copy.comment


def test_duplicate_without_comment():
    copy = editor.duplicate(Quotation(id=5), today=date(2025, 6, 5))
    assert copy.comment == '(Copia 05/06/2025)'


def test_section_subtotal(quotation):
    assert editor.section_subtotal(quotation, 1) == pytest.approx(2380)
    assert editor.section_subtotal(quotation, 2) == 500
    assert editor.section_subtotal(quotation, None) == 100


def test_payload_uses_local_prices(quotation):
    usd = editor.change_currency(quotation, Currency.USD, 950)
    payload = editor.to_api_payload(usd)
    assert payload['moneda'] == 'USD'
    assert payload['tasaCambio'] == 950
    assert payload['items'][0]['precio'] == 1000
    assert payload['total'] == 2980
    assert payload['iva'] == 380
    assert payload['entidadId'] == 7
    assert [s['id'] for s in payload['secciones']] == [1, 2]


def test_serialize_reads_back(quotation):
    doc = Quotation.from_api(editor.serialize(quotation))
    assert doc.items == quotation.items
    assert doc.ordered_sections() == quotation.ordered_sections()
    assert doc.entity == quotation.entity
    assert doc.comment == quotation.comment


def test_markup_edits_reprice_products(quotation):
    doc = editor.update_item(quotation, 1, profit_percent=50)
    assert doc.item(1).local_price == 1050
    assert doc.item(1).unit_price == 1050

    doc = editor.update_item(doc, 1, cost_price=800)
    assert doc.item(1).local_price == 1200

    doc = editor.update_item(quotation, 1, cost_price=500)
    assert doc.item(1).profit_percent == 100.0
    assert doc.item(1).local_price == 1000


def test_set_entity_and_comment(quotation):
    doc = editor.set_entity(quotation, None)
    assert doc.entity_id is None
    assert editor.set_comment(doc, None).comment == ''


def test_update_item_rejects_non_numeric_values(quotation):
    with pytest.raises(ValidationError):
        editor.update_item(quotation, 1, unit_price='abc')
    with pytest.raises(ValidationError):
        editor.update_item(quotation, 1, quantity='x')
    with pytest.raises(ValidationError):
        editor.update_item(quotation, 1, cost_price='barato')
    assert editor.update_item(quotation, 1, unit_price='1200').item(1).local_price == 1200


def test_price_edit_needs_positive_usd_rate(quotation):
    usd = dataclasses.replace(quotation, currency=Currency.USD, exchange_rate=0)
    with pytest.raises(ValidationError):
        editor.update_item(usd, 1, local_price=900)


def test_change_currency_rejects_non_numeric_rate(quotation):
    with pytest.raises(ValidationError):
        editor.change_currency(quotation, Currency.USD, 'abc')


def test_duplicate_reads_iso_date(quotation):
    assert editor.duplicate(quotation, today='2025-06-05').comment.endswith('(Copia 05/06/2025)')
    with pytest.raises(ValidationError):
        editor.duplicate(quotation, today='mañana')


def test_sections_with_same_order_keep_input_order(quotation_data):
    quotation_data['secciones'] = [
        {'id': 5, 'nombre': 'B', 'orden': 1},
        {'id': 3, 'nombre': 'C', 'orden': 1},
        {'id': 4, 'nombre': 'A', 'orden': 0},
        {'id': 6, 'nombre': 'D', 'orden': 1},
    ]
    doc = Quotation.from_api(quotation_data)
    assert [s.id for s in doc.ordered_sections()] == [4, 5, 3, 6]
    payload = editor.to_api_payload(doc)
    assert [s['id'] for s in payload['secciones']] == [4, 5, 3, 6]
