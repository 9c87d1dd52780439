"""Candidate URL generation for trait icons.

Trait icon paths on the asset CDN are renamed and re-versioned between
content-set releases and there is no index to consult, so a name is expanded
into every spelling the CDN has used. Order matters: the resolver probes the
list front to back and keeps the first hit.
"""
from __future__ import annotations

import re
from typing import Iterable, List, Optional, Sequence

from shop_plugin.catalog_source import asset_path_to_url
from shop_plugin.identifier_resolution import strip_set_prefix
from shop_plugin.settings import DEFAULT_ASSET_BASE_URL, DEFAULT_ASSET_SET_VERSIONS

TRAIT_ICON_DIR = "assets/ux/traiticons"
_WORD_SPLIT = re.compile(r"[^0-9A-Za-z]+")
_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")
_NON_ALNUM = re.compile(r"[^0-9a-z]+")
_ASSET_EXTENSION = re.compile(r"\.(tex|dds)$", re.IGNORECASE)
_URL_SCHEME = re.compile(r"^[a-z][a-z0-9+.-]*://", re.IGNORECASE)


def trait_key(name: str) -> str:
    """Cache key: ``"Void-Spawn "`` and ``"voidspawn"`` share an entry."""

    return _NON_ALNUM.sub("", (name or "").lower())


def placeholder_for(name: str) -> str:
    token = strip_set_prefix((name or "").strip())
    for char in token:
        if char.isalnum():
            return char.upper()
    return "?"


def split_words(name: str) -> List[str]:
    words: List[str] = []
    for chunk in _WORD_SPLIT.split(strip_set_prefix(name or "")):
        if chunk:
            words.extend(part for part in _CAMEL_BOUNDARY.split(chunk) if part)
    return words


def naming_variants(name: str) -> List[str]:
    """snake_case, lowercase without separators, camel-preserved; duplicates removed."""

    words = split_words(name)
    if not words:
        return []
    variants = [
        "_".join(word.lower() for word in words),
        "".join(word.lower() for word in words),
        "".join(words),
    ]
    return _unique(variants)


def hint_variants(hint_url: Optional[str], base_url: str = DEFAULT_ASSET_BASE_URL) -> List[str]:
    if not hint_url or not hint_url.strip():
        return []
    hint = hint_url.strip()
    variants = [hint] if _URL_SCHEME.match(hint) else []
    absolute = hint if _URL_SCHEME.match(hint) else asset_path_to_url(hint, base_url)
    converted = _ASSET_EXTENSION.sub(".png", absolute)
    variants.extend([converted, converted.lower()])
    return _unique(variants)


def build_candidates(
    name: str,
    hint_url: Optional[str] = None,
    *,
    base_url: str = DEFAULT_ASSET_BASE_URL,
    set_versions: Sequence[int] = DEFAULT_ASSET_SET_VERSIONS,
) -> List[str]:
    """Ordered probe list: hint variants, then versioned spellings newest first, then unversioned."""

    root = f"{base_url.rstrip('/')}/{TRAIT_ICON_DIR}"
    tokens = naming_variants(name)
    candidates = hint_variants(hint_url, base_url)
    for version in sorted(set(set_versions), reverse=True):
        for token in tokens:
            candidates.append(f"{root}/trait_icon_{version}_{token}.tft_set{version}.png")
            candidates.append(f"{root}/trait_icon_{version}_{token}.png")
    for token in tokens:
        candidates.append(f"{root}/trait_icon_{token}.png")
        candidates.append(f"{root}/{token}.png")
    return _unique(candidates)


def _unique(values: Iterable[str]) -> List[str]:
    seen = set()
    ordered: List[str] = []
    for value in values:
        if value and value not in seen:
            seen.add(value)
            ordered.append(value)
    return ordered
