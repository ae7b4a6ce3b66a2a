"""Memory lifecycle management.

Keeps each user's memory set bounded and healthy: statistics, per-user
limits with pruning, duplicate detection and importance re-scoring. These
operations are meant to run from a scheduled job, not on the chat path.

Pruning and conflict resolution are soft deletes: the row is hidden and
its vector is deleted best-effort, so a vector never outlives a visible
row for long and relational rows stay the source of truth.

Example:
    >>> manager = LifecycleManager(repository, gateway)
    >>> report = await manager.run_maintenance("user-42")
    >>> print(report.limits.pruned, report.conflicts.resolved)
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from datetime import datetime, timedelta
from itertools import combinations
from typing import Callable, Optional

from confidant.config.schemas.memory import (
    ConflictReport,
    LimitCheckResult,
    MaintenanceReport,
    Memory,
    MemoryConflict,
    MemoryStats,
    OptimizationResult,
    importance_bucket,
    utc_now,
)
from confidant.config.settings import LifecycleSettings
from confidant.core.storage.protocols import MemoryQuery, MemoryRepository
from confidant.memory.vector_store import VectorStoreGateway

logger = logging.getLogger(__name__)

_WORD_RE = re.compile(r"[\w']+")


def jaccard_similarity(a: str, b: str) -> float:
    """Jaccard similarity of the lowercase word sets of two texts."""
    words_a = set(_WORD_RE.findall(a.lower()))
    words_b = set(_WORD_RE.findall(b.lower()))
    union = words_a | words_b
    if not union:
        return 0.0
    return len(words_a & words_b) / len(union)


class LifecycleManager:
    """Statistics, limits, pruning, conflicts and importance for memories.

    Attributes:
        repository: Relational store of memory rows.
        gateway: Vector store gateway, used to delete vectors of hidden rows.
        settings: Lifecycle settings.
    """

    def __init__(
        self,
        repository: MemoryRepository,
        gateway: Optional[VectorStoreGateway] = None,
        settings: Optional[LifecycleSettings] = None,
        on_change: Optional[Callable[[str], None]] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the manager.

        Args:
            repository: Relational store of memory rows.
            gateway: Vector store gateway; without it vectors are left alone.
            settings: Lifecycle settings.
            on_change: Called with the user id whenever memories are hidden
                or re-scored (used to invalidate retrieval caches).
            clock: Source of the current UTC time.
        """
        self.repository = repository
        self.gateway = gateway
        self.settings = settings or LifecycleSettings()
        self._on_change = on_change
        self._clock = clock

    def _notify(self, user_id: str) -> None:
        if self._on_change is not None:
            self._on_change(user_id)

    async def _visible(self, user_id: str, *order_by: tuple[str, bool]) -> list[Memory]:
        return await self.repository.find(
            user_id, MemoryQuery(visible=True, order_by=list(order_by))
        )

    async def _hide(self, memory: Memory) -> bool:
        memory.is_visible = False
        try:
            await self.repository.update(memory)
        except Exception as e:
            memory.is_visible = True
            logger.error(f"[Lifecycle] Failed to hide memory {memory.id}: {e}")
            return False
        if memory.vector_id and self.gateway is not None:
            await self.gateway.delete(memory.user_id, memory.vector_id)
        return True

    # =========================================================================
    # Statistics
    # =========================================================================

    async def get_stats(self, user_id: str) -> MemoryStats:
        """Statistics over the user's visible memories."""
        memories = await self._visible(user_id)
        stats = MemoryStats(total=len(memories))
        if not memories:
            return stats

        for memory in memories:
            stats.by_importance[importance_bucket(memory.importance)] += 1
        stats.by_category = dict(Counter(m.category.value for m in memories))
        stats.by_type = dict(Counter(m.type.value for m in memories))
        stats.average_importance = round(
            sum(m.importance for m in memories) / len(memories), 1
        )
        stats.oldest = min(m.created_at for m in memories)
        stats.newest = max(m.created_at for m in memories)
        return stats

    # =========================================================================
    # Limits and Pruning
    # =========================================================================

    async def check_and_handle_limits(self, user_id: str) -> LimitCheckResult:
        """Prune when the user is near or over the per-user cap.

        Below the soft limit nothing happens. At or over the cap a large
        batch is pruned; in between a routine batch is pruned.
        """
        limit = self.settings.max_memories_per_user
        soft_limit = int(limit * self.settings.soft_limit_ratio)
        total = await self.repository.count(user_id, MemoryQuery(visible=True))

        if total < soft_limit:
            return LimitCheckResult(total=total, limit=limit, within_limits=True)

        if total >= limit:
            action, target = "hard_prune", self.settings.hard_prune_batch
            logger.warning(f"[Lifecycle] User {user_id} at memory cap ({total}/{limit})")
        else:
            action, target = "soft_prune", self.settings.soft_prune_batch
            logger.info(f"[Lifecycle] User {user_id} over soft limit ({total}/{soft_limit})")

        pruned = await self.prune_old_memories(user_id, target)
        return LimitCheckResult(
            total=total, limit=limit, within_limits=False, action=action, pruned=pruned
        )

    async def prune_old_memories(
        self, user_id: str, target_count: Optional[int] = None
    ) -> int:
        """Hide up to ``target_count`` stale memories.

        A memory is prunable when it is low-importance and older than the
        low-importance retention period, or older than the maximum age.
        The least important, least accessed, oldest go first.

        Returns:
            Number of memories hidden.
        """
        target = target_count if target_count is not None else self.settings.soft_prune_batch
        if target <= 0:
            return 0

        now = self._clock()
        low_cutoff = now - timedelta(days=self.settings.low_importance_retention_days)
        age_cutoff = now - timedelta(days=self.settings.max_age_days)
        threshold = self.settings.low_importance_threshold

        candidates = await self.repository.find(
            user_id,
            MemoryQuery(
                visible=True,
                created_before=max(low_cutoff, age_cutoff),
                order_by=[("importance", False), ("access_count", False), ("created_at", False)],
            ),
        )
        candidates = [
            m for m in candidates
            if (m.importance <= threshold and m.created_at < low_cutoff)
            or m.created_at < age_cutoff
        ][:target]

        pruned = 0
        for memory in candidates:
            if await self._hide(memory):
                pruned += 1

        if pruned:
            logger.info(f"[Lifecycle] Pruned {pruned} memories for user {user_id}")
            self._notify(user_id)
        if pruned < len(candidates):
            logger.warning(
                f"[Lifecycle] {len(candidates) - pruned} of {len(candidates)} prune candidates "
                f"could not be hidden for user {user_id}"
            )
        return pruned

    # =========================================================================
    # Conflicts
    # =========================================================================

    async def detect_conflicts(
        self, user_id: str, auto_resolve: bool = True
    ) -> ConflictReport:
        """Find pairs of memories that say the same thing.

        Pairs are compared only within the same type and category. When
        ``auto_resolve`` is set the less important memory of each pair is
        hidden; on a tie the newer memory is kept.
        """
        memories = await self._visible(user_id, ("created_at", True))
        threshold = self.settings.conflict_similarity_threshold

        groups: dict[tuple[str, str], list[Memory]] = {}
        for memory in memories:
            groups.setdefault((memory.type.value, memory.category.value), []).append(memory)

        report = ConflictReport()
        hidden: set[str] = set()

        for group in groups.values():
            # Newest first, so ``newer`` always precedes ``older``
            for newer, older in combinations(group, 2):
                if newer.id in hidden or older.id in hidden:
                    continue
                similarity = jaccard_similarity(newer.content, older.content)
                if similarity <= threshold:
                    continue

                conflict = MemoryConflict(
                    memory_id_1=newer.id,
                    memory_id_2=older.id,
                    similarity=round(similarity, 3),
                )
                if auto_resolve:
                    loser = older if newer.importance >= older.importance else newer
                    if await self._hide(loser):
                        hidden.add(loser.id)
                        conflict.hidden_id = loser.id
                        report.resolved += 1
                report.conflicts.append(conflict)

        if report.conflicts:
            logger.info(
                f"[Lifecycle] Found {len(report.conflicts)} conflicts for user {user_id}, "
                f"resolved {report.resolved}"
            )
        if report.resolved:
            self._notify(user_id)
        return report

    # =========================================================================
    # Importance
    # =========================================================================

    async def optimize_importance(self, user_id: str) -> OptimizationResult:
        """Re-score importance from usage.

        Frequently accessed memories gain a point; memories that were never
        accessed after ``demote_after_days`` lose one. Scores stay in
        [1, 10] and only changed rows are written.
        """
        now = self._clock()
        stale_before = now - timedelta(days=self.settings.demote_after_days)
        result = OptimizationResult()

        for memory in await self._visible(user_id):
            new_importance = memory.importance
            if memory.access_count >= self.settings.promote_access_count:
                new_importance = min(10, memory.importance + 1)
            elif memory.access_count == 0 and memory.created_at < stale_before:
                new_importance = max(1, memory.importance - 1)

            if new_importance == memory.importance:
                continue
            previous = memory.importance
            memory.importance = new_importance
            try:
                await self.repository.update(memory)
            except Exception as e:
                logger.error(f"[Lifecycle] Failed to re-score memory {memory.id}: {e}")
                memory.importance = previous
                continue
            if new_importance > previous:
                result.promoted += 1
            else:
                result.demoted += 1
            result.updated += 1

        if result.updated:
            logger.info(
                f"[Lifecycle] Re-scored {result.updated} memories for user {user_id} "
                f"(+{result.promoted}/-{result.demoted})"
            )
            self._notify(user_id)
        return result

    async def run_maintenance(self, user_id: str) -> MaintenanceReport:
        """Run limits, conflict resolution and importance re-scoring in order."""
        limits = await self.check_and_handle_limits(user_id)
        conflicts = await self.detect_conflicts(user_id, auto_resolve=True)
        optimization = await self.optimize_importance(user_id)
        return MaintenanceReport(
            user_id=user_id,
            limits=limits,
            conflicts=conflicts,
            optimization=optimization,
        )


__all__ = ["jaccard_similarity", "LifecycleManager"]
