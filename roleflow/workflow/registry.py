"""Read-only view over the features of a WorkflowState."""

from typing import Iterable

from roleflow.store.models import FeatureRecord, FeatureStatus, WorkflowState

# Work order for next(): earlier lifecycle stages first
PRIORITY = [
    FeatureStatus.DRAFT,
    FeatureStatus.CONFIRMED,
    FeatureStatus.STEPS_DEFINED,
    FeatureStatus.IMPLEMENTING,
]

PENDING_STATUSES = frozenset(PRIORITY) | {FeatureStatus.FAILED}


class FeatureRegistry:
    """Queries over WorkflowState.features. Never mutates state."""

    def __init__(self, state: WorkflowState):
        self._features = state.features

    def __contains__(self, feature_id: str) -> bool:
        return feature_id in self._features

    def __len__(self) -> int:
        return len(self._features)

    def get(self, feature_id: str) -> FeatureRecord | None:
        return self._features.get(feature_id)

    def ids(self) -> list[str]:
        return sorted(self._features)

    def pending(self, status_filter: "str | FeatureStatus | Iterable[FeatureStatus] | None" = None) -> list[str]:
        """Feature ids matching a status filter, in priority order.

        status_filter may be a single status (enum or value), several
        statuses, or "pending"/None for everything not completed.
        """
        if status_filter is None or status_filter == "pending":
            wanted = PENDING_STATUSES
        elif isinstance(status_filter, FeatureStatus):
            wanted = {status_filter}
        elif isinstance(status_filter, str):
            wanted = {FeatureStatus(status_filter)}
        else:
            wanted = set(status_filter)
        return [
            fid for fid in self._ordered()
            if self._features[fid].lifecycle in wanted
        ]

    def counts(self) -> dict[str, int]:
        """Number of features per status, every status present."""
        counts = {status.value: 0 for status in FeatureStatus}
        for record in self._features.values():
            counts[record.status] += 1
        return counts

    def next(self, include_failed: bool = False) -> list[str]:
        """Pending work in priority order. Failed features come last and only
        when asked for (implement --retry / --force)."""
        order = list(PRIORITY)
        if include_failed:
            order.append(FeatureStatus.FAILED)
        rank = {status: i for i, status in enumerate(order)}
        candidates = [
            fid for fid, record in self._features.items()
            if record.lifecycle in rank
        ]
        return sorted(
            candidates,
            key=lambda fid: (
                rank[self._features[fid].lifecycle],
                self._features[fid].created or "",
                fid,
            ),
        )

    def _ordered(self) -> list[str]:
        rank = {status: i for i, status in enumerate(PRIORITY + [FeatureStatus.FAILED, FeatureStatus.COMPLETED])}
        return sorted(
            self._features,
            key=lambda fid: (
                rank[self._features[fid].lifecycle],
                self._features[fid].created or "",
                fid,
            ),
        )
