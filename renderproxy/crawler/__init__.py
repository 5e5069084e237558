"""
renderproxy crawler module.

URL normalization and classification, the direct fetcher, and the shared
rendering-engine session with its navigation strategy.
"""

from renderproxy.crawler.fetch_result import FetchResult
from renderproxy.crawler.resource_classifier import (
    AssetKind,
    ResourceClass,
    ResourceClassifier,
    classify,
)
from renderproxy.crawler.url_normalizer import TargetURL, normalize_url

__all__ = [
    "AssetKind",
    "FetchResult",
    "ResourceClass",
    "ResourceClassifier",
    "TargetURL",
    "classify",
    "normalize_url",
]
