"""Parallel image download for document exports.

Every URL is tried directly first and then through a pass-through proxy.
Whatever comes back is decoded with Pillow and re-encoded as a bounded PNG
so the PDF layer only ever sees images it can embed. A failure of any kind
resolves to ``None``; the caller draws a placeholder instead.
"""
import io
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterable, Optional
from urllib.parse import quote

import requests
from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

MAX_SIDE = 600


def normalize_image(data: bytes, max_side: int = MAX_SIDE) -> bytes:
    """Decode ``data`` and return it as an RGB PNG no larger than ``max_side``."""
    with Image.open(io.BytesIO(data)) as img:
        img.load()
        if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
            rgba = img.convert("RGBA")
            flat = Image.new("RGB", rgba.size, (255, 255, 255))
            flat.paste(rgba, mask=rgba.split()[-1])
        else:
            flat = img.convert("RGB")
        flat.thumbnail((max_side, max_side))
        out = io.BytesIO()
        flat.save(out, format="PNG")
        return out.getvalue()


class ImagePrefetcher:
    """Fetches and caches images for the duration of one export."""

    def __init__(
        self,
        timeout: float = 10.0,
        proxy_url: Optional[str] = None,
        workers: int = 6,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.timeout = timeout
        self.proxy_url = proxy_url
        self.workers = max(1, workers)
        self.session = session or requests.Session()
        self.session.headers.setdefault("Accept", "image/*")
        self.cache: Dict[str, Optional[bytes]] = {}

    @classmethod
    def from_config(cls, config) -> "ImagePrefetcher":
        return cls(
            timeout=config.get("IMAGE_FETCH_TIMEOUT", 10.0),
            proxy_url=config.get("IMAGE_PROXY_URL") or None,
            workers=config.get("IMAGE_FETCH_WORKERS", 6),
        )

    def _download(self, url: str) -> Optional[bytes]:
        r = self.session.get(url, timeout=self.timeout)
        if r.status_code != 200 or not r.content:
            logger.warning("image %s -> HTTP %s (%d bytes)", url, r.status_code, len(r.content or b""))
            return None
        return r.content

    def fetch(self, url: str) -> Optional[bytes]:
        if not url or not url.startswith("http"):
            logger.warning("invalid image url: %r", url)
            return None
        candidates = [url]
        if self.proxy_url:
            candidates.append(self.proxy_url.format(url=quote(url, safe="")))
        for candidate in candidates:
            try:
                raw = self._download(candidate)
            except requests.RequestException as e:
                logger.warning("image fetch failed for %s: %s", candidate, e)
                continue
            if raw is None:
                continue
            try:
                return normalize_image(raw)
            except (UnidentifiedImageError, OSError, ValueError) as e:
                logger.warning("image %s is not decodable: %s", candidate, e)
        return None

    def prefetch(self, urls: Iterable[Optional[str]]) -> Dict[str, Optional[bytes]]:
        """Resolve every distinct URL in parallel and return the cache."""
        pending = []
        for url in urls:
            if url and url not in self.cache and url not in pending:
                pending.append(url)
        if pending:
            with ThreadPoolExecutor(max_workers=min(self.workers, len(pending))) as pool:
                for url, data in zip(pending, pool.map(self.fetch, pending)):
                    self.cache[url] = data
            missing = sum(1 for u in pending if self.cache[u] is None)
            logger.info("prefetched %d images (%d unavailable)", len(pending), missing)
        return self.cache

    def get(self, url: Optional[str]) -> Optional[bytes]:
        return self.cache.get(url) if url else None
