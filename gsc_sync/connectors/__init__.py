"""Data Connectors for the Search Console sync engine"""

from gsc_sync.connectors.base_connector import BaseConnector
from gsc_sync.connectors.search_console_connector import SearchConsoleConnector

__all__ = [
    "BaseConnector",
    "SearchConsoleConnector"
]
