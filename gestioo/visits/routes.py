# gestioo/visits/routes.py

import io

from flask import Blueprint, current_app, jsonify, request, send_file

from gestioo.api import client as api
from gestioo.visits.models import Visit
from gestioo.visits.workbook import export_visits

bp = Blueprint('visits', __name__)

XLSX_MIMETYPE = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'


def fetch_visits(filters: dict) -> list:
    """Every visit matching ``filters``, across all pages."""
    cfg = current_app.config
    rows = api.get_client().list_all_visits(filters, page_size=cfg.get('VISITS_PAGE_SIZE', 200))
    return [Visit.from_api(r) for r in rows]


@bp.route('/filters')
def filters():
    return jsonify(api.get_client().visit_filters())


@bp.route('/export')
def export():
    """Download the visit workbook for the current filters."""
    filters = {
        'q': request.args.get('q', '').strip(),
        'empresaId': request.args.get('empresaId'),
        'tecnicoId': request.args.get('tecnicoId'),
    }
    visits = fetch_visits(filters)
    cfg = current_app.config
    content, filename = export_visits(
        visits,
        timezone=cfg.get('VISITS_TIMEZONE', 'America/Santiago'),
        candidates=cfg.get('VISITS_TEMPLATE_CANDIDATES') or [],
    )
    return send_file(
        io.BytesIO(content),
        mimetype=XLSX_MIMETYPE,
        as_attachment=True,
        download_name=filename,
    )
