"""Deduplication of overlapping income pages."""

import logging
from typing import Dict, Iterable, List, Sequence

from ..models import IncomeRecord

logger = logging.getLogger(__name__)


def remove_duplicates(
    page: Sequence[IncomeRecord],
    previous_page: Iterable[IncomeRecord]
) -> List[IncomeRecord]:
    """
    Drop records of ``page`` that already appeared in ``previous_page``.

    Pages are requested with the previous page's last timestamp as the new
    window start, so overlap can only occur between adjacent pages. Records
    are compared on all eight fields; order of ``page`` is preserved.

    Args:
        page: Newly fetched page
        previous_page: The page fetched immediately before it

    Returns:
        Records of ``page`` not present in ``previous_page``
    """
    seen = set(previous_page)
    if not seen:
        return list(page)

    unique = [record for record in page if record not in seen]

    dropped = len(page) - len(unique)
    if dropped:
        logger.debug(f"Dropped {dropped} boundary duplicates from page of {len(page)}")

    return unique


class PageDeduplicator:
    """
    Stateful wrapper around ``remove_duplicates`` for one pagination run.

    Remembers the last page it saw and keeps simple statistics.
    """

    def __init__(self):
        self._previous_page: List[IncomeRecord] = []
        self.stats: Dict[str, int] = {
            'pages_checked': 0,
            'records_checked': 0,
            'duplicates_found': 0,
        }

    def accept(self, page: Sequence[IncomeRecord]) -> List[IncomeRecord]:
        """Deduplicate ``page`` against the previous one and remember it."""
        unique = remove_duplicates(page, self._previous_page)

        self.stats['pages_checked'] += 1
        self.stats['records_checked'] += len(page)
        self.stats['duplicates_found'] += len(page) - len(unique)

        self._previous_page = list(page)
        return unique
