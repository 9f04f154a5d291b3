import logging
import random
import time
from typing import Any, Dict, Generator, List, Optional, Tuple

import requests
from flask import current_app

from gestioo.errors import ApiError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:4000/api"
MAX_TRIES = 3

# search resource -> collection path
RESOURCES = {
    "entidades": "/entidades",
    "productos": "/productos-gestioo",
    "servicios": "/servicios-gestioo",
    "cotizaciones": "/cotizaciones",
}


def _error_message(r: requests.Response) -> str:
    try:
        body = r.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        msg = body.get("message") or body.get("error")
        if msg:
            return str(msg)
    return f"HTTP {r.status_code}"


def _rows(data: Any) -> List[Dict[str, Any]]:
    """Collections come back bare or wrapped in ``data``/``items``/``rows``."""
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in ("data", "items", "rows"):
            if isinstance(data.get(key), list):
                return data[key]
    return []


def _record(data: Any) -> Dict[str, Any]:
    if isinstance(data, dict) and isinstance(data.get("data"), dict):
        return data["data"]
    return data or {}


class GestiooClient:
    """Thin JSON client for the Gestioo REST backend.

    429 and 5xx answers as well as connection errors are retried with
    exponential backoff plus jitter; anything else non-2xx raises
    :class:`ApiError` straight away.
    """

    def __init__(self, base_url: str = DEFAULT_BASE_URL, token: str = "", timeout: int = 15) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update({"Accept": "application/json"})
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    @classmethod
    def from_config(cls, config) -> "GestiooClient":
        return cls(
            base_url=config.get("GESTIOO_API_URL") or DEFAULT_BASE_URL,
            token=config.get("GESTIOO_API_TOKEN") or "",
            timeout=config.get("API_TIMEOUT") or 15,
        )

    def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        tries = 0
        while True:
            try:
                r = self.session.request(method, url, params=params, json=json, timeout=self.timeout)
            except requests.RequestException as e:  # network issue
                tries += 1
                if tries > MAX_TRIES:
                    raise ApiError(None, f"No se pudo conectar con el servidor: {e}") from e
                delay = min(2 ** tries, 30) + random.random()
                logger.warning("%s %s failed (%s), retrying in %.1fs", method, path, e, delay)
                time.sleep(delay)
                continue
            if r.status_code == 429 or r.status_code >= 500:
                tries += 1
                if tries > MAX_TRIES:
                    raise ApiError(r.status_code, _error_message(r))
                delay = min(2 ** tries, 30) + random.random()
                logger.warning("%s %s -> %s, retrying in %.1fs", method, path, r.status_code, delay)
                time.sleep(delay)
                continue
            if r.status_code >= 400:
                raise ApiError(r.status_code, _error_message(r))
            if r.status_code == 204 or not r.content:
                return None
            return r.json()

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self.request("GET", path, params=params)

    def post(self, path: str, json: Any = None) -> Any:
        return self.request("POST", path, json=json)

    def put(self, path: str, json: Any = None) -> Any:
        return self.request("PUT", path, json=json)

    # -- quotations ---------------------------------------------------------

    def get_quotation(self, quotation_id: int) -> Dict[str, Any]:
        return _record(self.get(f"/cotizaciones/{quotation_id}"))

    def create_quotation(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return _record(self.post("/cotizaciones", json=payload))

    def update_quotation(self, quotation_id: int, payload: Dict[str, Any]) -> Dict[str, Any]:
        return _record(self.put(f"/cotizaciones/{quotation_id}", json=payload))

    def search(self, resource: str, query: str = "") -> List[Dict[str, Any]]:
        path = RESOURCES.get(resource)
        if path is None:
            raise KeyError(resource)
        params = {"q": query} if query else None
        return _rows(self.get(path, params=params))

    # -- visits -------------------------------------------------------------

    def visit_filters(self) -> Dict[str, List[Dict[str, Any]]]:
        data = self.get("/visitas/filters") or {}
        return {"tecnicos": data.get("tecnicos") or [], "empresas": data.get("empresas") or []}

    def paginate_visits(
        self,
        params: Optional[Dict[str, Any]] = None,
        page_size: int = 200,
        start_page: int = 1,
    ) -> Generator[Tuple[int, List[Dict[str, Any]]], None, None]:
        page = start_page
        while True:
            q = {k: v for k, v in (params or {}).items() if v not in (None, "")}
            q.update(page=page, pageSize=page_size)
            data = self.get("/visitas", params=q)
            # 204 is an empty result, not an error
            items = _rows(data)
            if not items:
                break
            yield page, items
            total_pages = (data or {}).get("totalPages") if isinstance(data, dict) else None
            if not total_pages or page >= total_pages:
                break
            page += 1

    def list_all_visits(self, params: Optional[Dict[str, Any]] = None, page_size: int = 200) -> List[Dict[str, Any]]:
        out: List[Dict[str, Any]] = []
        for page, items in self.paginate_visits(params, page_size=page_size):
            out.extend(items)
            logger.debug("visitas page=%s total=%s", page, len(out))
        return out


def get_client() -> GestiooClient:
    """Client configured from the running Flask app."""
    return GestiooClient.from_config(current_app.config)
