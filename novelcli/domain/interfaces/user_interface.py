"""Port for reporting pipeline progress to the user.

The command handler only talks to this interface; the rich console display
implements it, and tests substitute a mock.
"""

import abc
from typing import Any, Dict, List


class UserInterface(abc.ABC):
    """Messages, confirmations and end-of-run reports."""

    @abc.abstractmethod
    def display_error(self, error_message: str, **kwargs: Any) -> None:
        pass

    @abc.abstractmethod
    def display_warning(self, warning_message: str, **kwargs: Any) -> None:
        pass

    @abc.abstractmethod
    def display_info(self, info_message: str, **kwargs: Any) -> None:
        pass

    @abc.abstractmethod
    def ask_yes_no_question(self, question: str) -> bool:
        """Used by the navigator when ``auto_continue`` is off; True means continue."""
        pass

    @abc.abstractmethod
    def display_chapter_done(self, index: int, title: str, file_path: str) -> None:
        """Reports one written chapter (1-based position in the run)."""
        pass

    @abc.abstractmethod
    def display_run_summary(self, summary: Dict[str, Any]) -> None:
        """Shows the navigation or batch summary dict."""
        pass

    @abc.abstractmethod
    def display_cache_stats(self, stats: Dict[str, Dict[str, Any]]) -> None:
        """Shows per-namespace cache statistics as returned by ``CacheManager.get_stats``."""
        pass

    @abc.abstractmethod
    def display_provider_health(self, rankings: List[Dict[str, Any]], alerts: List[Dict[str, Any]]) -> None:
        """Shows provider rankings and unresolved health alerts."""
        pass
