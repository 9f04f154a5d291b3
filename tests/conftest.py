import os, sys
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import copy

import pytest


QUOTATION = {
    'id': 123,
    'tipo': 'CLIENTE',
    'estado': 'GENERADA',
    'moneda': 'CLP',
    'tasaCambio': 1,
    'comentariosCotizacion': 'Entrega en bodega',
    'personaResponsable': 'Paula',
    'entidad': {
        'id': 7,
        'nombre': 'Clínica Ñuñoa & Cía.',
        'rut': '76.758.352-4',
        'correo': 'compras@clinica.cl',
        'origen': 'RIDS',
    },
    'secciones': [
        {'id': 2, 'nombre': 'Servicios', 'orden': 1},
        {'id': 1, 'nombre': 'Equipos', 'orden': 0},
    ],
    'items': [
        {'id': 1, 'tipo': 'PRODUCTO', 'nombre': 'Notebook', 'descripcion': '14 pulgadas',
         'cantidad': 2, 'precio': 1000, 'precioCosto': 700, 'tieneIVA': True, 'seccionId': 1},
        {'id': 2, 'tipo': 'SERVICIO', 'nombre': 'Instalación', 'cantidad': 1,
         'precio': 500, 'seccionId': 2},
        {'id': 3, 'tipo': 'PRODUCTO', 'nombre': 'Cable', 'cantidad': 1,
         'precio': 100, 'seccionId': 99},
    ],
}


@pytest.fixture
def quotation_data():
    return copy.deepcopy(QUOTATION)


@pytest.fixture
def quotation(quotation_data):
    from gestioo.quotations.models import Quotation
    return Quotation.from_api(quotation_data)
