"""Carries monitoring configuration across stage transitions.

When an operation moves to its next stage the provider issues new header
ids. Headers of the new stage are matched to the monitored headers of the
project by name, from the strictest match to the loosest:

1. exact name
2. lowercase, trimmed
3. lowercase with whitespace and punctuation removed
4. shared keywords (tokens longer than three characters); the candidate
   sharing the most keywords wins and at least two must be shared

A matched old header is disabled and its settings are upserted onto the new
header id. Old monitored headers without a match are disabled.
"""

import logging
import re
from contextlib import ExitStack
from typing import Protocol

from .errors import FetchFailure
from .models import MonitoredHeader, StageHeader
from .runtime import FrozenStateTracker, MonitorLocks
from .store import HeaderStore, ProjectStore

logger = logging.getLogger(__name__)

MIN_SHARED_KEYWORDS = 2
MIN_KEYWORD_LENGTH = 4

_SEPARATORS = re.compile(r"[\s_-]+")
_NON_WORD = re.compile(r"[\W_]+")


class StageHeaderSource(Protocol):
    def get_stage_headers(self, stage_id: str) -> list[StageHeader]: ...


def lower_name(name: str) -> str:
    return name.strip().lower()


def simplify_name(name: str) -> str:
    """Lowercase and strip everything but letters and digits."""
    return _NON_WORD.sub("", name.lower())


def name_keywords(name: str) -> set[str]:
    """Tokens of a name split on whitespace, '_' and '-', longer than three characters."""
    return {t for t in _SEPARATORS.split(name.lower()) if len(t) >= MIN_KEYWORD_LENGTH}


class _HeaderIndex:
    """Monitored headers indexed by each matching tier."""

    def __init__(self, headers: list[MonitoredHeader]):
        self.headers = headers
        self.exact: dict[str, MonitoredHeader] = {}
        self.lower: dict[str, MonitoredHeader] = {}
        self.simplified: dict[str, MonitoredHeader] = {}
        self.keywords: dict[str, list[MonitoredHeader]] = {}

        # Later (newer) rows win a collision
        for header in headers:
            self.exact[header.header_name] = header
            self.lower[lower_name(header.header_name)] = header
            self.simplified[simplify_name(header.header_name)] = header
            for keyword in name_keywords(header.header_name):
                self.keywords.setdefault(keyword, []).append(header)

    def match(self, name: str) -> tuple[MonitoredHeader | None, str | None]:
        """Best old header for a new header name, with the tier that matched."""
        if name in self.exact:
            return self.exact[name], "exact"
        if lower_name(name) in self.lower:
            return self.lower[lower_name(name)], "lowercase"
        if simplify_name(name) in self.simplified:
            return self.simplified[simplify_name(name)], "simplified"

        new_keywords = name_keywords(name)
        best, best_score = None, 0
        seen: set[int] = set()
        for keyword in sorted(new_keywords):
            for candidate in self.keywords.get(keyword, []):
                if id(candidate) in seen:
                    continue
                seen.add(id(candidate))
                score = len(new_keywords & name_keywords(candidate.header_name))
                if score > best_score:
                    best, best_score = candidate, score

        if best is not None and best_score >= MIN_SHARED_KEYWORDS:
            return best, "keywords"
        return None, None


class ContinuityResolver:
    """Migrates monitored headers from an old stage to a new one."""

    def __init__(
        self,
        header_store: HeaderStore,
        project_store: ProjectStore,
        stage_headers: StageHeaderSource | None = None,
        locks: MonitorLocks | None = None,
        frozen_tracker: FrozenStateTracker | None = None,
    ):
        self.header_store = header_store
        self.project_store = project_store
        self.stage_headers = stage_headers
        self.locks = locks or MonitorLocks()
        self.frozen_tracker = frozen_tracker or FrozenStateTracker()

    def migrate_stage(
        self,
        old_stage_id: str,
        new_stage_id: str,
        new_headers: list[StageHeader] | None = None,
    ) -> bool:
        """Move monitoring from old_stage_id's headers to new_stage_id's.

        Args:
            old_stage_id: Stage the project is leaving
            new_stage_id: Stage the project is entering
            new_headers: Headers of the new stage; fetched from the provider
                when not given

        Returns:
            False if the stages do not resolve to the same project or the new
            stage's headers could not be fetched; True otherwise
        """
        old_project = self.project_store.get_project_id(old_stage_id)
        new_project = self.project_store.get_project_id(new_stage_id)

        if old_project is None or new_project is None:
            logger.warning(
                f"Cannot migrate {old_stage_id} -> {new_stage_id}: stage not found "
                f"(old project {old_project}, new project {new_project})"
            )
            return False
        if old_project != new_project:
            logger.warning(
                f"Cannot migrate {old_stage_id} -> {new_stage_id}: stages belong to "
                f"different projects ({old_project}, {new_project})"
            )
            return False

        project_id = old_project
        with self.locks.project(project_id):
            old_headers = self.header_store.list_headers(project_id=project_id)
            if not old_headers:
                logger.info(f"No monitored headers in project {project_id}, nothing to migrate")
                return True

            if new_headers is None:
                if self.stage_headers is None:
                    logger.error("No stage header source configured for migration")
                    return False
                try:
                    new_headers = self.stage_headers.get_stage_headers(new_stage_id)
                except FetchFailure as e:
                    logger.warning(f"Could not fetch headers of stage {new_stage_id}: {e}")
                    return False

            self._migrate(project_id, old_headers, new_headers)

        logger.info(f"Migrated project {project_id} from stage {old_stage_id} to {new_stage_id}")
        return True

    def _migrate(
        self,
        project_id: str,
        old_headers: list[MonitoredHeader],
        new_headers: list[StageHeader],
    ) -> None:
        """Apply the whole migration in one transaction.

        A failure part way leaves every old header monitored, so the next
        attempt sees the same candidates.
        """
        index = _HeaderIndex(old_headers)
        matched: dict[str, tuple[MonitoredHeader, StageHeader, str]] = {}
        for new_header in new_headers:
            old, tier = index.match(new_header.name)
            if old is not None:
                matched[new_header.id] = (old, new_header, tier)

        header_ids = sorted({old.header_id for old in old_headers} | set(matched))
        with ExitStack() as held:
            for header_id in header_ids:
                held.enter_context(self.locks.header(project_id, header_id))
            self._write_migration(project_id, old_headers, matched)

        for old in old_headers:
            self.frozen_tracker.clear(project_id, old.header_id)

    def _write_migration(
        self,
        project_id: str,
        old_headers: list[MonitoredHeader],
        matched: dict[str, tuple[MonitoredHeader, StageHeader, str]],
    ) -> None:
        with self.header_store.db.transaction() as conn:
            for old, new_header, tier in matched.values():
                self.header_store.set_monitored(project_id, old.header_id, False, conn=conn)
                self.header_store.upsert_settings(
                    project_id=project_id,
                    header_id=new_header.id,
                    header_name=new_header.name,
                    threshold=old.threshold,
                    alert_duration=old.alert_duration,
                    frozen_threshold=old.frozen_threshold,
                    is_monitored=True,
                    conn=conn,
                )
                logger.info(
                    f"Header '{old.header_name}' ({old.header_id}) -> "
                    f"'{new_header.name}' ({new_header.id}) by {tier} match"
                )

            carried = {old.header_id for old, _, _ in matched.values()}
            for old in old_headers:
                if old.header_id in carried or old.header_id in matched:
                    continue
                self.header_store.set_monitored(project_id, old.header_id, False, conn=conn)
                logger.info(f"Header '{old.header_name}' ({old.header_id}) has no match, disabled")
