import sys
import json
import asyncio
import logging
import argparse
from pathlib import Path
from typing import List, Dict, Any, Optional

from PyQt6.QtCore import QCoreApplication

from config import APP_NAME, APP_VERSION, merged_settings
from utils.geometry import Rect, Viewport
from content_locators import DocumentContext, TextFragment
from core import SettingsStore, ReadingSession

logger = logging.getLogger(__name__)

# Synthetic layout for plain text documents
TEXT_LINE_HEIGHT = 20.0
TEXT_GLYPH_HEIGHT = 16.0
TEXT_CHAR_WIDTH = 7.5
TEXT_MARGIN = 40.0


def setup_logging(debug: bool = False, log_file: Optional[str] = None):
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        filename=log_file
    )


def plain_text_layer(text: str, width: float) -> List[List[TextFragment]]:
    """Lay out plain text as one page of line fragments; blank lines separate paragraphs."""
    max_chars = max(10, int((width - 2 * TEXT_MARGIN) / TEXT_CHAR_WIDTH))
    fragments: List[TextFragment] = []
    top = TEXT_MARGIN
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line:
            top += TEXT_LINE_HEIGHT
            continue
        while line:
            chunk, line = line[:max_chars], line[max_chars:]
            rect = Rect.from_size(TEXT_MARGIN, top, len(chunk) * TEXT_CHAR_WIDTH, TEXT_GLYPH_HEIGHT)
            fragments.append(TextFragment(text=chunk, rect=rect))
            top += TEXT_LINE_HEIGHT
    return [fragments]


def build_document(path: str, viewport: Viewport) -> DocumentContext:
    """Describe a local document for the locators."""
    suffix = Path(path).suffix.lower()
    if suffix == '.pdf':
        return DocumentContext(viewport=viewport, url=path, pdf_source=path)
    if suffix == '.pptx':
        return DocumentContext(viewport=viewport, url=path, archive_source=path)
    text = Path(path).read_text(encoding='utf-8', errors='replace')
    layer = plain_text_layer(text, viewport.width)
    return DocumentContext(viewport=viewport, url=path, text_layer=lambda: layer)


def read_gaze_log(path: str) -> List[Dict[str, Any]]:
    """
    Read a JSON-lines gaze log.

    Each line holds `t` (ms) and either `x`/`y` or `"gaze": null` for a
    missing frame; an optional `scroll_y` updates the viewport first.
    """
    records = []
    with open(path, 'r') as f:
        for number, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                records.append(json.loads(line))
            except ValueError as e:
                logger.warning(f"Skipping malformed log line {number}: {e}")
    return records


async def replay(args) -> int:
    viewport = Viewport(args.width, args.height)
    store = SettingsStore(args.settings)
    if args.backend is not None:
        store.data['backend_url'] = args.backend
    if store.get_bool('debug'):
        logging.getLogger().setLevel(logging.DEBUG)
    session = ReadingSession(build_document(args.document, viewport), store=store)

    triggers = 0
    for record in read_gaze_log(args.log):
        if not isinstance(record, dict):
            continue
        if 'scroll_y' in record:
            viewport.scroll_to(viewport.scroll_x, float(record['scroll_y']))
        sample = None if record.get('gaze', True) is None else record
        shown = await session.feed_sample(sample, float(record.get('t', 0.0)))
        if shown is not None:
            triggers += 1
            print(json.dumps(shown))

    stats = session.processor.get_statistics()['pipeline']
    logger.info(f"Replay finished: {stats.total_samples} samples, {stats.accepted_points} accepted, "
                f"{triggers} triggers")
    return 0


def show_settings(args) -> int:
    store = SettingsStore(args.settings)
    updates = {}
    for item in args.set or []:
        key, _, value = item.partition('=')
        try:
            updates[key] = json.loads(value)
        except ValueError:
            updates[key] = value
    if updates:
        store.update(updates)
    print(json.dumps(merged_settings(store.data), indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='gazebrief', description=f"{APP_NAME} {APP_VERSION}")
    parser.add_argument('--debug', action='store_true', help='Verbose logging')
    parser.add_argument('--log-file', default=None, help='Write logs to this file')
    sub = parser.add_subparsers(dest='command', required=True)

    rp = sub.add_parser('replay', help='Replay a gaze log against a document and print triggers')
    rp.add_argument('log', help='JSON-lines gaze log')
    rp.add_argument('--document', required=True, help='PDF, PPTX or plain text file')
    rp.add_argument('--width', type=float, default=1280.0)
    rp.add_argument('--height', type=float, default=800.0)
    rp.add_argument('--settings', default=None, help='Settings JSON file')
    rp.add_argument('--backend', default=None, help="Summarization endpoint ('' for local-only)")

    sp = sub.add_parser('settings', help='Print effective settings')
    sp.add_argument('--settings', default=None, help='Settings JSON file')
    sp.add_argument('--set', action='append', metavar='KEY=VALUE', help='Update a setting')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.debug, args.log_file)
    app = QCoreApplication.instance() or QCoreApplication(sys.argv[:1])
    app.setApplicationName(APP_NAME)

    try:
        if args.command == 'replay':
            return asyncio.run(replay(args))
        return show_settings(args)
    except (OSError, ValueError) as e:
        logger.error(f"{args.command} failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
