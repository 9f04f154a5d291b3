import logging
from pathlib import Path
from typing import Optional

import click
from flask import current_app
from flask.cli import AppGroup

from gestioo.api import client as api
from gestioo.api.sequencing import LiveSearch
from gestioo.exports.images import ImagePrefetcher
from gestioo.exports.quotation_pdf import export_quotation
from gestioo.quotations.models import Quotation
from gestioo.visits.routes import fetch_visits
from gestioo.visits.workbook import export_visits


gestioo_cli = AppGroup("gestioo", help="Quotation and visit export commands.")


@gestioo_cli.command("quote-pdf")
@click.argument("quotation_id", type=int)
@click.option("--output", "-o", type=click.Path(dir_okay=True, path_type=Path), default=None,
              help="File or directory to write (defaults to the generated name)")
def quote_pdf_command(quotation_id: int, output: Optional[Path]) -> None:
    """Render quotation QUOTATION_ID to PDF."""
    cfg = current_app.config
    doc = Quotation.from_api(api.get_client().get_quotation(quotation_id))
    out = export_quotation(
        doc,
        prefetcher=ImagePrefetcher.from_config(cfg),
        logo_dir=cfg.get("BRANDING_LOGO_DIR", ""),
    )
    path = _target(output, out.filename)
    path.write_bytes(out.content)
    logging.info("wrote %s (%d bytes)", path, len(out.content))
    click.echo(str(path))


@gestioo_cli.command("export-visits")
@click.option("--empresa-id", type=int, default=None, help="Only visits of this company")
@click.option("--tecnico-id", type=int, default=None, help="Only visits of this technician")
@click.option("--query", "-q", default="", help="Free-text filter")
@click.option("--output", "-o", type=click.Path(dir_okay=True, path_type=Path), default=None)
def export_visits_command(empresa_id: Optional[int], tecnico_id: Optional[int], query: str,
                          output: Optional[Path]) -> None:
    """Write the visit workbook for the given filters."""
    cfg = current_app.config
    visits = fetch_visits({"empresaId": empresa_id, "tecnicoId": tecnico_id, "q": query})
    content, filename = export_visits(
        visits,
        timezone=cfg.get("VISITS_TIMEZONE", "America/Santiago"),
        candidates=cfg.get("VISITS_TEMPLATE_CANDIDATES") or [],
    )
    path = _target(output, filename)
    path.write_bytes(content)
    logging.info("wrote %s with %d visits", path, len(visits))
    click.echo(str(path))


@gestioo_cli.command("search")
@click.argument("resource", type=click.Choice(sorted(api.RESOURCES)))
def search_command(resource: str) -> None:
    """Search RESOURCE as you type: one query per input line.

    Lines arriving faster than SEARCH_DEBOUNCE_MS are collapsed and only the
    newest answer is printed.
    """
    client = api.get_client()

    def show(query, rows):
        click.echo(f"{query!r}: {len(rows)} resultados")
        for row in rows:
            click.echo(f"  {row.get('id')}  {row.get('nombre') or row.get('name') or ''}")

    live = LiveSearch(
        lambda q: client.search(resource, q),
        show,
        key=resource,
        wait_ms=current_app.config.get("SEARCH_DEBOUNCE_MS", 300),
    )
    for line in click.get_text_stream("stdin"):
        live.type(line.strip())
    live.debouncer.flush()


def _target(output: Optional[Path], filename: str) -> Path:
    if output is None:
        return Path(filename)
    if output.is_dir():
        return output / filename
    output.parent.mkdir(parents=True, exist_ok=True)
    return output
