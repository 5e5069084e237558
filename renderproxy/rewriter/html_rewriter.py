"""
Streaming HTML rewriter for rendered documents.

Runs the ``html.parser`` tokenizer over the serialized DOM and records
source offsets of the tags it cares about. Only those spans are replaced;
all other markup is preserved byte-for-byte. Transformations, in order:

1. Remove ``<meta http-equiv="Content-Security-Policy">`` elements
2. Rewrite script[src], link[href] and img[src] to proxy URLs
3. Insert ``<base href=document URL>`` when the document has none
4. Insert the client shim right before ``</head>``, once per document

Script and style bodies are raw text to the tokenizer, so markup-looking
strings inside them are never touched.
"""

import html
import re
from dataclasses import dataclass, field
from html.parser import HTMLParser
from urllib.parse import urljoin

from renderproxy.rewriter.context import RewriteContext
from renderproxy.rewriter.shim import SHIM_MARKER, build_shim_tag
from renderproxy.utils.logging import get_logger

logger = get_logger(__name__)

# (tag, attribute) pairs whose values are resource references
REWRITE_TARGETS: frozenset[tuple[str, str]] = frozenset(
    {
        ("script", "src"),
        ("link", "href"),
        ("img", "src"),
    }
)

_ATTRIBUTE = re.compile(
    r"""(?P<name>[^\s/>"'=]+)
        (?:\s*=\s*(?P<value>"[^"]*"|'[^']*'|[^\s>"'=<`]+))?""",
    re.VERBOSE,
)


@dataclass
class _Splice:
    start: int
    end: int
    text: str
    order: int = 1  # insertions (0) go before replacements at the same offset


@dataclass
class _Reference:
    start: int
    raw_tag: str
    tag: str
    attribute: str
    value: str


@dataclass
class RewriteResult:
    """Rewritten document plus what was changed."""

    html: str
    rewritten: int = 0
    csp_removed: int = 0
    base_inserted: bool = False
    shim_inserted: bool = False
    references: list[tuple[str, str]] = field(default_factory=list)


class _TagScanner(HTMLParser):
    """Collects offsets of the tags the rewriter edits."""

    def __init__(self, source: str) -> None:
        super().__init__(convert_charrefs=True)
        self._line_starts = [0]
        for match in re.finditer("\n", source):
            self._line_starts.append(match.end())

        self.references: list[_Reference] = []
        self.csp_spans: list[tuple[int, int]] = []
        self.base_href: str | None = None
        self.has_base = False
        self.has_shim = False
        self.head_open_end: int | None = None
        self.head_close: int | None = None
        self.html_open_end: int | None = None
        self.doctype_end: int | None = None

    def _offset(self) -> int:
        line, column = self.getpos()
        return self._line_starts[line - 1] + column

    def handle_decl(self, decl: str) -> None:
        if self.doctype_end is None and decl.lower().startswith("doctype"):
            # getpos() still points at "<!"
            self.doctype_end = self._offset() + len(decl) + 3

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        raw = self.get_starttag_text() or ""
        start = self._offset()
        end = start + len(raw)

        if tag == "html" and self.html_open_end is None:
            self.html_open_end = end
        elif tag == "head" and self.head_open_end is None:
            self.head_open_end = end
        elif tag == "script" and any(name == SHIM_MARKER for name, _ in attrs):
            self.has_shim = True
            return
        elif tag == "base":
            self.has_base = True
            if self.base_href is None:
                self.base_href = dict(attrs).get("href")
        elif tag == "meta":
            http_equiv = (dict(attrs).get("http-equiv") or "").strip().lower()
            if http_equiv == "content-security-policy":
                self.csp_spans.append((start, end))
                return

        for name, value in attrs:
            if value is not None and (tag, name) in REWRITE_TARGETS:
                self.references.append(_Reference(start, raw, tag, name, value))
                break

    def handle_startendtag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        self.handle_starttag(tag, attrs)

    def handle_endtag(self, tag: str) -> None:
        if tag == "head" and self.head_close is None:
            self.head_close = self._offset()


def _replace_attribute(raw_tag: str, tag: str, attribute: str, new_value: str) -> str:
    """Swap the value of ``attribute`` inside a raw start tag."""
    escaped = html.escape(new_value, quote=True)
    for match in _ATTRIBUTE.finditer(raw_tag, 1 + len(tag)):
        if match.group("name").lower() != attribute or match.group("value") is None:
            continue
        value = match.group("value")
        quote_char = value[0] if value[0] in ("'", '"') else '"'
        start, end = match.span("value")
        return f"{raw_tag[:start]}{quote_char}{escaped}{quote_char}{raw_tag[end:]}"
    return raw_tag


class HTMLRewriter:
    """Rewrites one rendered document to loop back through the proxy."""

    def __init__(self, context: RewriteContext, *, inject_shim: bool = True) -> None:
        self._context = context
        self._inject_shim = inject_shim

    def rewrite(self, document: str) -> RewriteResult:
        scanner = _TagScanner(document)
        scanner.feed(document)
        scanner.close()

        context = self._context
        result = RewriteResult(html=document)
        splices: list[_Splice] = []

        for start, end in scanner.csp_spans:
            splices.append(_Splice(start, end, ""))
            result.csp_removed += 1

        resolve_base = context.document_url
        if scanner.base_href:
            resolve_base = urljoin(context.document_url, scanner.base_href)

        for ref in scanner.references:
            proxied = context.make_proxy_url(ref.value, resolve_base)
            if proxied is None or proxied == ref.value.strip():
                continue
            new_tag = _replace_attribute(ref.raw_tag, ref.tag, ref.attribute, proxied)
            if new_tag != ref.raw_tag:
                splices.append(_Splice(ref.start, ref.start + len(ref.raw_tag), new_tag))
                result.rewritten += 1
                result.references.append((ref.value, proxied))

        base_tag = ""
        if not scanner.has_base:
            base_tag = f'<base href="{html.escape(context.document_url, quote=True)}">'
            result.base_inserted = True
        shim_tag = ""
        if self._inject_shim and not scanner.has_shim:
            shim_tag = build_shim_tag(context)
        result.shim_inserted = bool(shim_tag)

        if scanner.head_open_end is not None:
            if base_tag:
                splices.append(_Splice(scanner.head_open_end, scanner.head_open_end, base_tag, 0))
            if shim_tag:
                at = scanner.head_close if scanner.head_close is not None else scanner.head_open_end
                splices.append(_Splice(at, at, shim_tag, 0))
        elif base_tag or shim_tag:
            # No <head>: create one after <html>, or after the doctype
            at = scanner.html_open_end
            if at is None:
                at = scanner.doctype_end or 0
            splices.append(_Splice(at, at, f"<head>{base_tag}{shim_tag}</head>", 0))

        result.html = _apply(document, splices)

        logger.debug(
            "Document rewritten",
            document_url=context.document_url,
            rewritten=result.rewritten,
            csp_removed=result.csp_removed,
            base_inserted=result.base_inserted,
        )
        return result


def _apply(document: str, splices: list[_Splice]) -> str:
    if not splices:
        return document
    parts: list[str] = []
    cursor = 0
    for splice in sorted(splices, key=lambda s: (s.start, s.order)):
        if splice.start < cursor:
            continue
        parts.append(document[cursor : splice.start])
        parts.append(splice.text)
        cursor = splice.end
    parts.append(document[cursor:])
    return "".join(parts)


def rewrite_html(document: str, context: RewriteContext) -> str:
    """Rewrite a rendered document and return the new markup."""
    return HTMLRewriter(context).rewrite(document).html
