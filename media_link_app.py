#!/usr/bin/env python3
"""
Media Link Finder - command line tool

Fetches a page (through a CORS proxy, directly, or with a headless browser),
runs the extraction engine over it and lists the playable audio/video links.
Also understands share-target addresses carrying ?link= / ?description=.

Usage:
  python3 media_link_app.py https://example.com/episode-12
  python3 media_link_app.py --share "https://app.local/?description=listen%20https://x.com/ep"
  python3 media_link_app.py            # reads urls.txt
"""

import argparse
import json
import logging
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional
from urllib.parse import parse_qs, urlparse

import requests
from playwright.sync_api import sync_playwright

from media_link_finder import MediaKind, MediaReference, extract_media, find_url, parse_document

# ============================================================================
# CONFIGURATION
# ============================================================================

class Config:
    """Global configuration."""
    OUTPUT_DIR = Path("output")
    LOG_FILE = "extraction.log"
    URLS_FILE = Path("urls.txt")
    PROXY_ENDPOINT = "https://api.allorigins.win/get"
    MAX_RETRIES = 3
    TIMEOUT = 30
    RENDER_TIMEOUT_MS = 60000
    RENDER_SETTLE_MS = 1500
    USER_AGENT = (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )
    FETCH_MODES = ("proxy", "direct", "render")

    KIND_ICONS = {
        MediaKind.AUDIO: "🎵",
        MediaKind.VIDEO: "🎬",
    }

    EMPTY_URL_MESSAGE = "Please enter a valid URL."
    FETCH_ERROR_MESSAGE = "ERROR: Could not fetch or parse. Check the log."
    NO_RESULTS_MESSAGE = "No media sources found on that page."
    RESULTS_HEADER = "Media sources found:"

# ============================================================================
# LOGGING CONFIGURATION
# ============================================================================

logger = logging.getLogger("media_link_app")
_installed_handlers: List[logging.Handler] = []


def setup_logging(log_file: str = Config.LOG_FILE) -> logging.Logger:
    """Configure logging with file and console handlers."""
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    # Replace handlers from an earlier call instead of stacking them
    while _installed_handlers:
        handler = _installed_handlers.pop()
        root.removeHandler(handler)
        handler.close()

    # File handler
    fh = logging.FileHandler(log_file)
    fh.setLevel(logging.DEBUG)

    # Console handler
    ch = logging.StreamHandler()
    ch.setLevel(logging.INFO)

    formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - [%(funcName)s] - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    fh.setFormatter(formatter)
    ch.setFormatter(formatter)

    root.addHandler(fh)
    root.addHandler(ch)
    _installed_handlers.extend([fh, ch])

    return logger

# ============================================================================
# ERRORS
# ============================================================================

class MediaLinkError(Exception):
    """Base error for the host tool."""


class FetchError(MediaLinkError):
    """The page could not be fetched, unwrapped or rendered."""


class ParseError(MediaLinkError):
    """The fetched HTML could not be parsed or scanned."""

# ============================================================================
# DATA MODELS
# ============================================================================

@dataclass
class PageResult:
    """Links found on one page."""
    page_id: str
    source_url: str
    media: List[MediaReference] = field(default_factory=list)
    extraction_timestamp: str = ""

    def count(self, kind: MediaKind) -> int:
        return sum(1 for ref in self.media if ref.kind == kind)

# ============================================================================
# FETCH UTILITIES
# ============================================================================

class PageFetcher:
    """Retrieves page HTML with retry logic."""

    def __init__(self, mode: str = "proxy"):
        if mode not in Config.FETCH_MODES:
            raise ValueError(f"Unknown fetch mode: {mode}")
        self.mode = mode
        self.session = requests.Session()
        self.session.headers.update({'User-Agent': Config.USER_AGENT})

    def fetch_page(self, url: str) -> str:
        """
        Fetch the HTML of url using the configured mode.

        Raises:
            FetchError: on any network, proxy or rendering failure.
        """
        logger.info(f"Fetching webpage ({self.mode}): {url}")
        if self.mode == "render":
            return self._render(url)

        last_error: Optional[Exception] = None
        for attempt in range(Config.MAX_RETRIES):
            try:
                if self.mode == "proxy":
                    html = self._fetch_via_proxy(url)
                else:
                    html = self._fetch_direct(url)
                logger.info(f"Successfully fetched {url} ({len(html)} chars)")
                return html
            except (requests.RequestException, ValueError) as e:
                last_error = e
                logger.warning(f"Attempt {attempt + 1}/{Config.MAX_RETRIES} failed: {e}")
                if attempt < Config.MAX_RETRIES - 1:
                    time.sleep(2 ** attempt)  # Exponential backoff

        logger.error(f"Failed to fetch {url} after {Config.MAX_RETRIES} attempts")
        raise FetchError(f"Could not fetch {url}") from last_error

    def _fetch_via_proxy(self, url: str) -> str:
        response = self.session.get(
            Config.PROXY_ENDPOINT,
            params={'url': url},
            timeout=Config.TIMEOUT,
        )
        response.raise_for_status()
        payload = response.json()
        contents = payload.get('contents') if isinstance(payload, dict) else None
        if not isinstance(contents, str):
            raise ValueError("Proxy response has no 'contents' field")
        return contents

    def _fetch_direct(self, url: str) -> str:
        response = self.session.get(url, timeout=Config.TIMEOUT, allow_redirects=True)
        response.raise_for_status()
        response.encoding = response.apparent_encoding or 'utf-8'
        return response.text

    def _render(self, url: str) -> str:
        """Load url in headless Chromium and return the rendered DOM."""
        try:
            with sync_playwright() as p:
                browser = p.chromium.launch(headless=True)
                try:
                    context = browser.new_context(user_agent=Config.USER_AGENT)
                    page = context.new_page()
                    try:
                        page.goto(url, wait_until="domcontentloaded", timeout=Config.RENDER_TIMEOUT_MS)
                    except Exception:
                        page.goto(url, wait_until="load", timeout=Config.RENDER_TIMEOUT_MS)
                    page.wait_for_timeout(Config.RENDER_SETTLE_MS)
                    return page.content()
                finally:
                    browser.close()
        except Exception as e:
            logger.error(f"Failed to render {url}: {e}")
            raise FetchError(f"Could not render {url}") from e

# ============================================================================
# SHARE TARGET
# ============================================================================

def resolve_shared_link(address: str) -> Optional[str]:
    """
    Pick the page URL out of a share-target address.

    The 'link' parameter wins when present; otherwise the first URL inside
    'description' is used. address may be a full URL or a bare query string.
    """
    if not address:
        return None

    parsed = urlparse(address)
    if parsed.scheme and parsed.netloc:
        query = parsed.query
    else:
        query = address.split('?', 1)[-1]
    params = parse_qs(query, keep_blank_values=True)

    link = (params.get('link') or [''])[0]
    if link:
        return link

    description = (params.get('description') or [''])[0]
    if description:
        return find_url(description)
    return None

# ============================================================================
# OUTPUT
# ============================================================================

class ResultRenderer:
    """Turns a link list into console text."""

    @staticmethod
    def render(links: List[MediaReference]) -> str:
        if not links:
            return Config.NO_RESULTS_MESSAGE

        lines = [Config.RESULTS_HEADER]
        for ref in links:
            icon = Config.KIND_ICONS.get(ref.kind, "•")
            lines.append(f"  {icon} {ref.url}")
        return "\n".join(lines)


class MetadataManager:
    """Save and manage per-page reports."""

    @staticmethod
    def to_dict(result: PageResult) -> Dict:
        return {
            'page_id': result.page_id,
            'source_url': result.source_url,
            'extraction_timestamp': result.extraction_timestamp,
            'media': [
                {'url': ref.url, 'kind': ref.kind.value} for ref in result.media
            ],
            'summary': {
                'total_audio': result.count(MediaKind.AUDIO),
                'total_video': result.count(MediaKind.VIDEO),
            },
        }

    @staticmethod
    def save_metadata(result: PageResult, output_dir: Path) -> Path:
        """Save page report to <output_dir>/<page_id>/metadata.json."""
        page_dir = output_dir / result.page_id
        page_dir.mkdir(parents=True, exist_ok=True)

        metadata_file = page_dir / "metadata.json"
        with open(metadata_file, 'w', encoding='utf-8') as f:
            json.dump(MetadataManager.to_dict(result), f, indent=2, ensure_ascii=False)

        logger.info(f"Saved metadata to {metadata_file}")
        return metadata_file

# ============================================================================
# MAIN ORCHESTRATOR
# ============================================================================

class MediaLinkFinder:
    """Fetch, extract and report for a list of page URLs."""

    def __init__(
        self,
        fetcher: Optional[PageFetcher] = None,
        output_dir: Optional[Path] = Config.OUTPUT_DIR,
        unique: bool = False,
        legacy_video_selector: bool = False,
        strict: bool = False,
        out=None,
    ):
        self.fetcher = fetcher or PageFetcher()
        self.output_dir = output_dir
        self.options = {
            'unique': unique,
            'legacy_video_selector': legacy_video_selector,
            'strict': strict,
        }
        self.out = out or sys.stdout
        self.page_counter = 0

    def process_url(self, url: str) -> Optional[PageResult]:
        """Handle one page. Returns None when nothing could be processed."""
        url = (url or "").strip()
        if not url:
            self._print(Config.EMPTY_URL_MESSAGE)
            return None

        self.page_counter += 1
        page_id = f"page_{self.page_counter:03d}"
        logger.info(f"Processing {page_id}: {url}")

        try:
            html = self.fetcher.fetch_page(url)
            links = self._extract(html, url)
        except MediaLinkError as e:
            logger.error(f"Error processing {url}: {e!r}")
            self._print(Config.FETCH_ERROR_MESSAGE)
            return None

        result = PageResult(
            page_id=page_id,
            source_url=url,
            media=links,
            extraction_timestamp=time.strftime('%Y-%m-%d %H:%M:%S'),
        )

        self._print(ResultRenderer.render(links))
        if self.output_dir is not None:
            MetadataManager.save_metadata(result, self.output_dir)

        logger.info(
            f"{page_id} summary: {result.count(MediaKind.AUDIO)} audio, "
            f"{result.count(MediaKind.VIDEO)} video"
        )
        return result

    def process_urls(self, urls: List[str]) -> List[Optional[PageResult]]:
        logger.info(f"Starting media link extraction for {len(urls)} URLs")
        return [self.process_url(url) for url in urls]

    def _extract(self, html: str, url: str) -> List[MediaReference]:
        try:
            return extract_media(parse_document(html), base_url=url, **self.options)
        except Exception as e:
            raise ParseError(f"Could not parse {url}") from e

    def _print(self, text: str) -> None:
        print(text, file=self.out)

# ============================================================================
# ENTRY POINT
# ============================================================================

def read_urls_file(path: Path) -> List[str]:
    """Read URLs from a text file, skipping blank lines and # comments."""
    if not path.exists():
        return []
    with open(path, 'r', encoding='utf-8') as f:
        return [line.strip() for line in f if line.strip() and not line.strip().startswith('#')]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="List direct audio/video links found on web pages."
    )
    parser.add_argument('urls', nargs='*', help="page URLs to scan")
    parser.add_argument('--share', metavar='ADDRESS',
                        help="share-target address carrying ?link= or ?description=")
    parser.add_argument('--mode', choices=Config.FETCH_MODES, default='proxy',
                        help="how to retrieve pages (default: proxy)")
    parser.add_argument('--unique', action='store_true', help="drop repeated links")
    parser.add_argument('--legacy-video-selector', action='store_true',
                        help="look up typed mp4 sources under <audio> like older releases")
    parser.add_argument('--strict', action='store_true',
                        help="require candidates to be a bare URL")
    parser.add_argument('--output', type=Path, default=Config.OUTPUT_DIR,
                        help="directory for metadata.json reports")
    parser.add_argument('--no-save', action='store_true', help="do not write reports")
    parser.add_argument('--log-file', default=Config.LOG_FILE)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    setup_logging(args.log_file)

    urls = list(args.urls)
    if args.share:
        shared = resolve_shared_link(args.share)
        if shared:
            logger.info(f"Resolved shared link: {shared}")
            urls.append(shared)
        else:
            logger.warning(f"No link found in shared address: {args.share}")

    if not urls and not args.share:
        urls = read_urls_file(Config.URLS_FILE)

    if not urls:
        logger.error("No URLs provided. Pass URLs, --share, or create urls.txt")
        print(Config.EMPTY_URL_MESSAGE)
        return 1

    finder = MediaLinkFinder(
        fetcher=PageFetcher(args.mode),
        output_dir=None if args.no_save else args.output,
        unique=args.unique,
        legacy_video_selector=args.legacy_video_selector,
        strict=args.strict,
    )
    results = finder.process_urls(urls)
    logger.info("Extraction completed!")
    return 0 if all(r is not None for r in results) else 1


if __name__ == "__main__":
    sys.exit(main())
