#!/usr/bin/env python3
"""
Media Link Finder - extraction engine

Finds direct audio (mp3) and video (mp4) URLs inside an already parsed HTML
document. Three source patterns are scanned per media kind:

  1. typed <source> children of the media container
  2. a direct src attribute on the container itself
  3. generic data-* attributes anywhere in the page

The engine never fetches, never parses on its own and keeps no state between
calls. Pass it a BeautifulSoup tree (or anything exposing select()/get()).
"""

import logging
import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterable, List, Optional, Protocol, Set, Tuple
from urllib.parse import urljoin

from bs4 import BeautifulSoup

logger = logging.getLogger("media_link_finder")

# ============================================================================
# DOCUMENT INTERFACE
# ============================================================================

class Element(Protocol):
    def get(self, key: str, default=None): ...


class ParsedDocument(Protocol):
    """Read-only tree supporting CSS selection in document order."""

    def select(self, selector: str) -> Iterable[Element]: ...


def parse_document(html: str) -> BeautifulSoup:
    """Parse raw HTML text into a ParsedDocument."""
    return BeautifulSoup(html or "", "html.parser")

# ============================================================================
# DATA MODELS
# ============================================================================

class MediaKind(str, Enum):
    AUDIO = "audio"
    VIDEO = "video"


@dataclass(frozen=True)
class MediaReference:
    """A discovered media URL paired with its kind."""
    url: str
    kind: MediaKind


@dataclass(frozen=True)
class ScanConfig:
    """How to search a document for one media kind."""
    container_tag: str
    mime_type: str
    data_attr_primary: str
    extension: str
    wrapper_tag: str = "source"
    direct_attr: str = "src"
    data_attr_shared: str = "data-source"
    # Parent of typed <source> elements; None means container_tag.
    source_parent_tag: Optional[str] = None

    @property
    def typed_source_parent(self) -> str:
        return self.source_parent_tag or self.container_tag

# ============================================================================
# CONFIGURATION
# ============================================================================

URL_PATTERN = re.compile(r'(https?://\S+)', re.IGNORECASE)

AUDIO_SCAN = ScanConfig(
    container_tag="audio",
    mime_type="audio/mp3",
    data_attr_primary="data-mp3",
    extension="mp3",
)

VIDEO_SCAN = ScanConfig(
    container_tag="video",
    mime_type="video/mp4",
    data_attr_primary="data-mp4",
    extension="mp4",
)

# Older releases looked up typed mp4 sources under <audio>. Kept for callers
# that depend on those results.
LEGACY_VIDEO_SCAN = replace(VIDEO_SCAN, source_parent_tag="audio")

# ============================================================================
# URL MATCHING
# ============================================================================

def find_url(text: Optional[str]) -> Optional[str]:
    """
    Return the first http(s) URL token found in text, verbatim.

    The token runs from the scheme up to the next whitespace character. No
    trailing punctuation is trimmed. Returns None when nothing matches.
    """
    if not text:
        return None
    match = URL_PATTERN.search(text)
    return match.group(0) if match else None


def is_of_kind(url: Optional[str], extension: str, strict: bool = False) -> bool:
    """
    Check that url looks like a URL and ends with the given extension.

    By default the shape check only requires a URL token somewhere in the
    string, so "see https://x.com/a.mp3" is accepted. With strict=True the
    whole string must be a single URL token.
    """
    if not url:
        return False

    if strict:
        if not URL_PATTERN.fullmatch(url):
            return False
    elif find_url(url) is None:
        return False

    return url.lower().endswith('.' + extension.lower())

# ============================================================================
# SCANNER
# ============================================================================

def _resolve(candidate: str, base_url: Optional[str]) -> Optional[str]:
    # Only values carrying no URL token at all are treated as relative.
    if base_url and find_url(candidate) is None:
        try:
            return urljoin(base_url, candidate)
        except ValueError:
            logger.debug(f"Ignoring unresolvable value: {candidate!r}")
            return None
    return candidate


def scan(
    doc: ParsedDocument,
    cfg: ScanConfig,
    base_url: Optional[str] = None,
    strict: bool = False,
) -> List[str]:
    """
    Collect every URL matching cfg, in scan order.

    Typed sources come first, then direct src attributes, then data
    attributes. Every pattern is always evaluated and repeats are kept.
    """
    urls: List[str] = []

    def accept(value: Optional[str], label: str) -> None:
        if not value:
            return
        candidate = _resolve(value, base_url)
        if candidate and is_of_kind(candidate, cfg.extension, strict=strict):
            urls.append(candidate)
            logger.debug(f"[{cfg.container_tag}/{label}] {candidate}")

    # Typed <source> children
    typed_selector = (
        f'{cfg.typed_source_parent} > {cfg.wrapper_tag}[type="{cfg.mime_type}"]'
    )
    for source in doc.select(typed_selector):
        accept(source.get(cfg.direct_attr), cfg.wrapper_tag)

    # Direct src on the container
    for container in doc.select(f'{cfg.container_tag}[{cfg.direct_attr}]'):
        accept(container.get(cfg.direct_attr), cfg.direct_attr)

    # data-* attributes, primary wins over shared
    data_selector = f'[{cfg.data_attr_primary}], [{cfg.data_attr_shared}]'
    for element in doc.select(data_selector):
        value = element.get(cfg.data_attr_primary) or element.get(cfg.data_attr_shared)
        accept(value, 'data')

    return urls

# ============================================================================
# AGGREGATOR
# ============================================================================

def extract_media(
    doc: ParsedDocument,
    base_url: Optional[str] = None,
    unique: bool = False,
    legacy_video_selector: bool = False,
    strict: bool = False,
) -> List[MediaReference]:
    """
    Run the audio scan, then the video scan, and tag each URL with its kind.

    Audio entries always precede video entries. Repeated URLs are kept unless
    unique=True, which drops later repeats of the same (url, kind) pair.
    """
    video_cfg = LEGACY_VIDEO_SCAN if legacy_video_selector else VIDEO_SCAN
    passes: List[Tuple[MediaKind, ScanConfig]] = [
        (MediaKind.AUDIO, AUDIO_SCAN),
        (MediaKind.VIDEO, video_cfg),
    ]

    results: List[MediaReference] = []
    seen: Set[Tuple[str, MediaKind]] = set()

    for kind, cfg in passes:
        for url in scan(doc, cfg, base_url=base_url, strict=strict):
            if unique:
                if (url, kind) in seen:
                    continue
                seen.add((url, kind))
            results.append(MediaReference(url=url, kind=kind))

    logger.debug(f"Extracted {len(results)} media links")
    return results


def extract_media_from_html(html: str, base_url: Optional[str] = None, **options) -> List[MediaReference]:
    """Parse html and run extract_media on the resulting tree."""
    return extract_media(parse_document(html), base_url=base_url, **options)
