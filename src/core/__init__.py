"""
Core services: settings persistence, summarization and session wiring.
"""

from .settings_store import SettingsStore
from .summarizer import SummarizationClient, SummaryMode, is_likely_code, local_summary
from .session import ReadingSession

__all__ = [
    'SettingsStore', 'SummarizationClient', 'SummaryMode', 'is_likely_code', 'local_summary',
    'ReadingSession'
]
