"""Collapses monitored headers that share a name within a project."""

import logging

from .models import MonitoredHeader
from .runtime import MonitorLocks
from .store import HeaderStore

logger = logging.getLogger(__name__)


def header_id_sort_key(header_id: str) -> tuple[int, int, str]:
    """Order numeric ids numerically, above any non-numeric id."""
    if header_id.isdigit():
        return (1, int(header_id), header_id)
    return (0, 0, header_id)


class DuplicateReconciler:
    """Keeps only the newest monitored header for each name."""

    def __init__(self, header_store: HeaderStore, locks: MonitorLocks | None = None):
        self.header_store = header_store
        self.locks = locks or MonitorLocks()

    def reconcile_duplicates(self, project_id: str) -> int:
        """Disable all but the greatest header id in each same-name group.

        Names are compared lowercased and trimmed.

        Returns:
            Number of headers disabled
        """
        with self.locks.project(project_id):
            headers = self.header_store.list_headers(project_id=project_id)

            groups: dict[str, list[MonitoredHeader]] = {}
            for header in headers:
                groups.setdefault(header.header_name.strip().lower(), []).append(header)

            disabled = 0
            for name, group in groups.items():
                if len(group) < 2:
                    continue

                group.sort(key=lambda h: header_id_sort_key(h.header_id), reverse=True)
                keep, extras = group[0], group[1:]
                for extra in extras:
                    with self.locks.header(project_id, extra.header_id):
                        if self.header_store.set_monitored(project_id, extra.header_id, False):
                            disabled += 1
                logger.info(
                    f"Project {project_id}: kept header {keep.header_id} for '{name}', "
                    f"disabled {', '.join(h.header_id for h in extras)}"
                )

        return disabled

    def reconcile_all(self) -> int:
        """Reconcile every project that has monitored headers."""
        total = 0
        for project_id in self.header_store.list_monitored_projects():
            total += self.reconcile_duplicates(project_id)
        if total:
            logger.info(f"Disabled {total} duplicate header(s)")
        return total
