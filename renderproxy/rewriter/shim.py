"""
Client-side shim injected into proxied documents.

The shim keeps post-load activity inside the proxy origin:
- ``fetch`` and ``XMLHttpRequest.prototype.open`` are wrapped so every
  request URL goes through ``makeProxyUrl``
- a capturing click listener turns anchor navigations into top-level
  navigations to the proxied URL (already-proxied hrefs are followed as-is)

``makeProxyUrl`` resolves against the document's own URL, not the proxy's.
"""

import json

from renderproxy.rewriter.context import RewriteContext

SHIM_MARKER = "data-renderproxy-shim"

_SHIM_TEMPLATE = """(function () {
  if (window.__renderproxyShim) { return; }
  window.__renderproxyShim = true;

  var PROXY_BASE = __PROXY_BASE__;
  var TARGET_URL = __TARGET_URL__;
  var PASSTHROUGH = /^(data:|blob:|javascript:|about:|mailto:|tel:|#)/i;

  function isProxied(url) {
    return typeof url === "string" && url.indexOf(PROXY_BASE) === 0;
  }

  function makeProxyUrl(url) {
    if (url === undefined || url === null) { return url; }
    url = String(url).trim();
    if (!url || PASSTHROUGH.test(url) || isProxied(url)) { return url; }
    var absolute;
    try {
      absolute = new URL(url, TARGET_URL).href;
    } catch (e) {
      return url;
    }
    if (isProxied(absolute)) { return absolute; }
    if (!/^https?:/i.test(absolute)) { return url; }
    return PROXY_BASE + encodeURIComponent(absolute);
  }
  window.__renderproxyMakeProxyUrl = makeProxyUrl;

  function asString(input) {
    if (typeof URL !== "undefined" && input instanceof URL) { return input.href; }
    return input;
  }

  var originalFetch = window.fetch;
  if (typeof originalFetch === "function") {
    window.fetch = function (input, init) {
      if (typeof Request !== "undefined" && input instanceof Request) {
        input = new Request(makeProxyUrl(input.url), input);
      } else {
        input = makeProxyUrl(asString(input));
      }
      return originalFetch.call(this, input, init);
    };
  }

  if (typeof XMLHttpRequest !== "undefined") {
    var originalOpen = XMLHttpRequest.prototype.open;
    XMLHttpRequest.prototype.open = function (method, url) {
      var args = Array.prototype.slice.call(arguments);
      args[1] = makeProxyUrl(asString(url));
      return originalOpen.apply(this, args);
    };
  }

  document.addEventListener("click", function (event) {
    var node = event.target;
    var anchor = node && node.closest ? node.closest("a[href]") : null;
    if (!anchor) { return; }
    var href = anchor.getAttribute("href");
    if (!href || PASSTHROUGH.test(href.trim())) { return; }
    event.preventDefault();
    if (isProxied(href)) {
      window.top.location.href = href;
      return;
    }
    if (isProxied(anchor.href)) {
      window.top.location.href = anchor.href;
      return;
    }
    window.top.location.href = makeProxyUrl(href);
  }, true);
})();"""


def _js_literal(value: str) -> str:
    """JSON string literal that is safe inside a <script> element."""
    return json.dumps(value).replace("</", "<\\/")


def build_shim_script(context: RewriteContext) -> str:
    """Shim source parameterized with the proxy base and document URL."""
    return _SHIM_TEMPLATE.replace("__PROXY_BASE__", _js_literal(context.proxy_base)).replace(
        "__TARGET_URL__", _js_literal(context.document_url)
    )


def build_shim_tag(context: RewriteContext) -> str:
    """Shim wrapped in a marked <script> element."""
    return f"<script {SHIM_MARKER}>{build_shim_script(context)}</script>"
