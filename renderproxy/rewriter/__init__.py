"""
renderproxy rewriter module.

Rewrites rendered documents and injects the client-side shim.
"""

from renderproxy.rewriter.context import RewriteContext, unwrap_proxy_url
from renderproxy.rewriter.html_rewriter import HTMLRewriter, RewriteResult, rewrite_html
from renderproxy.rewriter.shim import build_shim_script, build_shim_tag

__all__ = [
    "HTMLRewriter",
    "RewriteContext",
    "RewriteResult",
    "build_shim_script",
    "build_shim_tag",
    "rewrite_html",
    "unwrap_proxy_url",
]
