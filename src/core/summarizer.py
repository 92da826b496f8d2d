"""
Summarization client.

Sends extracted text to the summarization endpoint and returns prose. The
endpoint is an external collaborator: request `{text, mode}`, response
`{summary}` (or `{result}`). When it is unreachable, misconfigured or
returns an error the client falls back to a local truncation so the
reading flow keeps working offline.
"""

import re
import asyncio
import logging
from enum import Enum
from typing import Optional

import requests

logger = logging.getLogger(__name__)

TLDR_LIMIT = 240
EXPLAIN_LIMIT = 800

CODE_KEYWORDS = re.compile(
    r"\b(function|var|let|const|if|else|for|while|return|class|def|import|public|private|"
    r"static|void|int|float|String|#include|using|try|catch|finally|async|await)\b|=>"
)


class SummaryMode(Enum):
    """Request modes understood by the endpoint."""
    TLDR = "tldr"
    EXPLAIN_MORE = "explain_more"
    EXPLAIN_CODE = "explain_code"


def is_likely_code(text: str, in_code_block: bool = False) -> bool:
    """
    Heuristic code detection for selections.

    Args:
        text: Selected text
        in_code_block: Selection sits inside a preformatted/code element

    Returns:
        True when the text looks like source code
    """
    if in_code_block:
        return True
    lines = text.split('\n')
    indented_ratio = sum(1 for line in lines if re.match(r"^\s+", line)) / max(1, len(lines))
    brace_count = len(re.findall(r"[{};]", text))
    keyword_count = len(CODE_KEYWORDS.findall(text))
    return brace_count > 2 or keyword_count > 1 or indented_ratio > 0.2


def local_summary(text: str, mode: SummaryMode = SummaryMode.TLDR) -> str:
    """Offline fallback: truncation with a local-only marker."""
    if mode == SummaryMode.EXPLAIN_MORE:
        suffix = '...' if len(text) > EXPLAIN_LIMIT else ''
        return f"Explanation (local-only): {text[:EXPLAIN_LIMIT]}{suffix}"
    if len(text) > TLDR_LIMIT:
        text = text[:TLDR_LIMIT - 3] + '...'
    return f"TL;DR (local-only): {text}"


class SummarizationClient:
    """HTTP client for the summarization endpoint with a local fallback."""

    def __init__(self, backend_url: Optional[str] = None, timeout: float = 20.0,
                 session: Optional[requests.Session] = None):
        """
        Initialize summarization client.

        Args:
            backend_url: Endpoint URL; empty or None uses the local fallback only
            timeout: Request timeout in seconds
            session: Shared requests session
        """
        self.backend_url = backend_url or None
        self.timeout = timeout
        self.session = session or requests.Session()
        self.stats = {'requests': 0, 'fallbacks': 0}

        logger.info(f"SummarizationClient initialized: backend={self.backend_url or 'local-only'}")

    def summarize_sync(self, text: str, mode: SummaryMode = SummaryMode.TLDR) -> str:
        """
        Summarize text, blocking.

        Args:
            text: Text to summarize
            mode: Summary style

        Returns:
            Summary prose (never raises)
        """
        self.stats['requests'] += 1
        if not self.backend_url:
            self.stats['fallbacks'] += 1
            return local_summary(text, mode)

        try:
            response = self.session.post(self.backend_url, json={'text': text, 'mode': mode.value},
                                         timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
            summary = payload.get('summary') or payload.get('result') if isinstance(payload, dict) else None
            if summary:
                return str(summary)
            logger.warning(f"Summarization endpoint returned no summary: {payload!r}")
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Summary request failed: {e}")

        self.stats['fallbacks'] += 1
        return local_summary(text, mode)

    async def summarize(self, text: str, mode: SummaryMode = SummaryMode.TLDR) -> str:
        """Summarize without blocking the event loop."""
        return await asyncio.to_thread(self.summarize_sync, text, mode)
