# gestioo/quotations/routes.py

import dataclasses
import io

from flask import Blueprint, current_app, jsonify, request, send_file

from gestioo.api import client as api
from gestioo.api.sequencing import RequestSequence
from gestioo.errors import ValidationError
from gestioo.exports.images import ImagePrefetcher
from gestioo.exports.quotation_pdf import DOWNLOAD, export_quotation
from gestioo.quotations import editor
from gestioo.quotations.models import Entity, Quotation
from gestioo.quotations.pricing import compute_line, compute_margin
from gestioo.quotations.validation import validate_quotation

bp = Blueprint('quotations', __name__)

# one counter per process; keys are "<caller key>:<resource>"
search_sequence = RequestSequence()

ACTIONS = {
    'add_section': editor.add_section,
    'update_section': editor.update_section,
    'remove_section': editor.remove_section,
    'add_item': editor.add_item,
    'update_item': editor.update_item,
    'remove_item': editor.remove_item,
    'change_currency': editor.change_currency,
    'set_state': editor.set_state,
    'set_entity': lambda doc, entity=None: editor.set_entity(doc, Entity.from_api(entity)),
    'set_comment': editor.set_comment,
    'duplicate': editor.duplicate,
}


def _load(quotation_id: int) -> Quotation:
    return Quotation.from_api(api.get_client().get_quotation(quotation_id))


def _decode(data) -> Quotation:
    """Client-sent document; malformed fields are a 400, not a crash."""
    if not isinstance(data, dict):
        raise ValidationError('Documento inválido')
    try:
        return Quotation.from_api(data)
    except ValidationError:
        raise
    except (TypeError, ValueError, AttributeError) as e:
        raise ValidationError(f'Documento inválido: {e}')


def _editor_view(doc: Quotation) -> dict:
    """Document plus everything the editing UI derives from it."""
    lines = []
    for item in doc.items:
        margin = compute_margin(item)
        lines.append({
            'id': item.id,
            **dataclasses.asdict(compute_line(item)),
            'margin': dataclasses.asdict(margin) if margin else None,
        })
    sections = [
        {
            'id': s.id,
            'items': len(editor.section_items(doc, s.id)),
            'subtotal': editor.section_subtotal(doc, s.id),
        }
        for s in doc.ordered_sections()
    ]
    return {
        'document': editor.serialize(doc),
        'totals': dataclasses.asdict(editor.totals(doc)),
        'lines': lines,
        'sections': sections,
    }


@bp.route('/<int:quotation_id>/pdf')
def quotation_pdf(quotation_id):
    """Render the quotation; ``?mode=preview`` shows it inline."""
    doc = _load(quotation_id)
    cfg = current_app.config
    out = export_quotation(
        doc,
        prefetcher=ImagePrefetcher.from_config(cfg),
        logo_dir=cfg.get('BRANDING_LOGO_DIR', ''),
        mode=request.args.get('mode', DOWNLOAD),
    )
    return send_file(
        io.BytesIO(out.content),
        mimetype='application/pdf',
        as_attachment=not out.inline,
        download_name=out.filename,
    )


@bp.route('/<int:quotation_id>/duplicate', methods=['POST'])
def duplicate_quotation(quotation_id):
    copy = editor.duplicate(_load(quotation_id))
    created = api.get_client().create_quotation(editor.to_api_payload(copy))
    current_app.logger.info('quotation %s duplicated as %s', quotation_id, created.get('id'))
    return jsonify(quotation=created), 201


@bp.route('/<int:quotation_id>/state', methods=['POST'])
def change_state(quotation_id):
    data = request.get_json(silent=True) or {}
    if not data.get('estado'):
        raise ValidationError('Debe indicar el estado')
    doc = editor.set_state(_load(quotation_id), data['estado'])
    updated = api.get_client().update_quotation(quotation_id, editor.to_api_payload(doc))
    return jsonify(quotation=updated)


@bp.route('/<int:quotation_id>', methods=['PUT'])
def save_quotation(quotation_id):
    """Validate the edited document and push it to the backend."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Cuerpo JSON inválido')
    doc = validate_quotation(_decode(data))
    saved = api.get_client().update_quotation(quotation_id, editor.to_api_payload(doc))
    return jsonify(quotation=saved)


@bp.route('/editor', methods=['POST'])
def apply_edit():
    """
    Apply one editing action to a document sent by the client.
    Body: { document: {...}, action: "add_item", args: {...} }.
    Returns the new document with per-line values and totals.
    """
    data = request.get_json(silent=True) or {}
    action = ACTIONS.get(data.get('action'))
    if action is None:
        raise ValidationError(f"Acción desconocida: {data.get('action')}")
    doc = _decode(data.get('document') or {})
    try:
        doc = action(doc, **(data.get('args') or {}))
    except ValidationError:
        raise
    except (TypeError, ValueError) as e:
        raise ValidationError(f'Argumentos inválidos: {e}')
    return jsonify(_editor_view(doc))


@bp.route('/search')
def search():
    """
    Catalog/entity search with last-issued-wins semantics.
    A response superseded by a newer request for the same key comes back
    with ``stale: true`` and no results.
    """
    resource = request.args.get('resource', '')
    if resource not in api.RESOURCES:
        raise ValidationError(f'Recurso desconocido: {resource}')
    q = request.args.get('q', '')
    key = f"{request.args.get('key') or 'default'}:{resource}"
    fresh, rows = search_sequence.run(key, api.get_client().search, resource, q)
    return jsonify(resource=resource, q=q, stale=not fresh, results=rows if fresh else [])
