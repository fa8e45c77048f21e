"""Rewrite Telegram file URLs into stable proxy URLs.

Every injection point (single URL, image src tuple, attribute mapping,
attachment HTML, document body, final response bytes) is a thin adapter
around one ``RewritePass``, so the same attachment gets the same proxy URL no
matter where it is encountered.
"""

import hashlib
import logging
import re
import time
from collections.abc import Callable, Sequence
from typing import Any, TypeVar

from markupsafe import escape

from tgcloud.models.attachment import (
    FALLBACK_PREFIX,
    UNMATCHED_PREFIX,
    AttachmentRecord,
    extract_remote_path,
    is_synthetic_handle,
    proxy_path_for,
)
from tgcloud.store.base import MetadataStore
from tgcloud.telegram.client import TelegramClient

logger = logging.getLogger(__name__)

T = TypeVar("T")

_SRC_ATTR_RE = re.compile(r"""src=["'][^"']+["']""")

# Sentence punctuation that a URL scan swallows from surrounding prose
_TRAILING_PUNCTUATION = ".,;:!?)"


class RewritePass:
    """Matching and substitution state for a single rewrite call.

    Holds one timestamp and a URL memo so that, within the pass, a URL seen
    twice maps to one identifier and two different URLs never share one.
    """

    def __init__(self, rewriter: "UrlRewriter") -> None:
        self.rewriter = rewriter
        self.store = rewriter.store
        self.now = int(time.time())
        self._seen: dict[str, str] = {}

    def _proxy(self, record: AttachmentRecord) -> str:
        return self.rewriter.proxy_url(record.remote_file_id)

    def _attach_observed_url(self, record: AttachmentRecord, url: str) -> None:
        # A synthetic handle without a URL can adopt the observed one; real
        # mappings are never overwritten by what happens to be in the markup.
        if url and is_synthetic_handle(record.remote_file_id) and not record.remote_url:
            record.remote_url = url
            self.store.put(record)
            logger.info("Attached observed URL to attachment %d", record.local_id)

    def _fallback(self, record: AttachmentRecord, url: str) -> str:
        record.remote_file_id = f"{FALLBACK_PREFIX}{record.local_id}_{self.now}"
        if url:
            record.remote_url = url
        self.store.put(record)
        logger.info(
            "Fallback handle %s for attachment %d", record.remote_file_id, record.local_id
        )
        return self._proxy(record)

    def for_local_id(self, local_id: int, observed_url: str = "") -> str | None:
        """Proxy URL for a known attachment, or None when it has nothing to proxy."""
        record = self.store.get(local_id)
        if record is not None and record.remote_file_id:
            self._attach_observed_url(record, observed_url)
            return self._proxy(record)
        if observed_url:
            return self._fallback(record or AttachmentRecord(local_id=local_id), observed_url)
        return None

    def for_remote_url(self, url: str, remote_path: str) -> str:
        """Proxy URL for a Telegram file URL found in free text."""
        if url in self._seen:
            return self._seen[url]

        record = self.store.find_by_remote_handle_or_url(remote_path)
        if record is not None and record.remote_file_id:
            self._attach_observed_url(record, url)
            proxy = self._proxy(record)
        elif record is not None:
            proxy = self._fallback(record, url)
        else:
            digest = hashlib.md5(url.encode("utf-8"), usedforsecurity=False).hexdigest()
            record = self.store.create(
                remote_file_id=f"{UNMATCHED_PREFIX}{digest}_{self.now}", remote_url=url
            )
            logger.info(
                "No attachment for %s, created %s",
                self.rewriter.client.redact(url),
                record.remote_file_id,
            )
            proxy = self._proxy(record)

        self._seen[url] = proxy
        return proxy

    def _substitute(self, match: re.Match[str]) -> str:
        url = match.group(0)
        stripped = url.rstrip(_TRAILING_PUNCTUATION)
        trailing = url[len(stripped):]
        return self.for_remote_url(stripped, extract_remote_path(stripped)) + trailing

    def scan(self, text: str) -> str:
        """Replace every Telegram file URL in ``text``."""
        if not self.rewriter.client.is_remote_url(text):
            return text
        return self.rewriter.client.url_pattern.sub(self._substitute, text)


class UrlRewriter:
    """Entry points for the host's rendering hooks.

    None of the adapters raise: on any internal error the input is returned
    unchanged and the error is logged.
    """

    def __init__(
        self,
        store: MetadataStore,
        client: TelegramClient,
        public_base_url: str = "",
    ) -> None:
        self.store = store
        self.client = client
        self.public_base_url = public_base_url.rstrip("/")

    def proxy_url(self, remote_file_id: str) -> str:
        return f"{self.public_base_url}{proxy_path_for(remote_file_id)}"

    def _guarded(self, label: str, original: T, fn: Callable[[RewritePass], T]) -> T:
        try:
            return fn(RewritePass(self))
        except Exception:
            logger.exception("URL rewrite failed in %s; leaving content unchanged", label)
            return original

    # -- adapters ----------------------------------------------------------

    def rewrite_url(self, url: str, local_id: int | None = None) -> str:
        """Rewrite a single attachment URL."""
        if not url:
            return url
        return self._guarded("url", url, lambda p: self._rewrite_url(p, url, local_id))

    def _rewrite_url(self, rewrite: RewritePass, url: str, local_id: int | None) -> str:
        if local_id is not None:
            observed = url if self.client.is_remote_url(url) else ""
            proxy = rewrite.for_local_id(local_id, observed)
            if proxy:
                return proxy
        return rewrite.scan(url)

    def rewrite_image_src(self, image: Sequence[Any] | None, local_id: int) -> Any:
        """Rewrite the URL slot of an ``(url, width, height, ...)`` image tuple."""
        if not image or not image[0]:
            return image

        def run(rewrite: RewritePass) -> Any:
            items = list(image)
            items[0] = self._rewrite_url(rewrite, items[0], local_id)
            return tuple(items) if isinstance(image, tuple) else items

        return self._guarded("image_src", image, run)

    def rewrite_attributes(
        self, attrs: dict[str, Any], local_id: int | None = None
    ) -> dict[str, Any]:
        """Rewrite ``src`` with the attachment mapping and scan the other values."""

        def run(rewrite: RewritePass) -> dict[str, Any]:
            result = dict(attrs)
            for name, value in attrs.items():
                if not isinstance(value, str):
                    continue
                if name == "src":
                    result[name] = self._rewrite_url(rewrite, value, local_id)
                else:
                    result[name] = rewrite.scan(value)
            return result

        return self._guarded("attributes", attrs, run)

    def rewrite_html(self, html: str, local_id: int | None = None) -> str:
        """Rewrite an attachment's image HTML."""
        if not html:
            return html

        def run(rewrite: RewritePass) -> str:
            out = html
            if local_id is not None:
                found = self.client.url_pattern.search(out)
                proxy = rewrite.for_local_id(local_id, found.group(0) if found else "")
                if proxy:
                    src = f'src="{escape(proxy)}"'
                    out = _SRC_ATTR_RE.sub(lambda _m: src, out)
            return rewrite.scan(out)

        return self._guarded("html", html, run)

    def rewrite_content(self, content: str) -> str:
        """Rewrite every Telegram URL in a document body."""
        if not content:
            return content
        return self._guarded("content", content, lambda p: p.scan(content))

    def rewrite_output(self, body: bytes | str) -> bytes | str:
        """Last-resort scan of a fully rendered response body."""
        if isinstance(body, str):
            return self.rewrite_content(body)
        if not body or self.client.file_host.encode() not in body:
            return body

        def run(rewrite: RewritePass) -> bytes:
            text = body.decode("utf-8", errors="surrogateescape")
            return rewrite.scan(text).encode("utf-8", errors="surrogateescape")

        return self._guarded("output", body, run)
