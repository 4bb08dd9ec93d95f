"""
Status pseudo-mode: a read-only summary of the workflow.

The report depends only on the state, so two calls without a mutation in
between return equal reports. Nothing is written and nothing is audited.
"""

from roleflow.modes.base import ModeReport
from roleflow.store.models import WorkflowState
from roleflow.workflow.registry import FeatureRegistry


class StatusController:

    def report(self, state: WorkflowState, locked: bool = False) -> ModeReport:
        registry = FeatureRegistry(state)
        features = []
        for feature_id in registry.ids():
            record = registry.get(feature_id)
            features.append({
                "feature_id": feature_id,
                "status": record.status,
                "created": record.created,
                "test_results": record.to_dict()["test_results"],
                "attempts": record.attempts,
                "failure_reason": record.failure_reason,
            })

        return ModeReport(
            mode="status",
            action="status",
            mode_after=state.mode,
            details={
                "active_mode": state.mode,
                "started_at": state.started_at,
                "current_feature": state.current_feature,
                "counts": registry.counts(),
                "features": features,
                "next": registry.next(),
                "failed": registry.pending("failed"),
                "context": dict(state.context),
                "history_entries": len(state.history),
                "locked": locked,  # another invocation holds the workspace
            },
        )


def format_status(report: ModeReport) -> str:
    """Plain-text rendering for the terminal."""
    details = report.details
    lines = [f"Mode:     {details['active_mode']}"]
    if details.get("locked"):
        lines.append("Busy:     another roleflow invocation is running")
    if details["started_at"]:
        lines.append(f"Since:    {details['started_at']}")
    if details["current_feature"]:
        lines.append(f"Feature:  {details['current_feature']}")
    lines.append("")

    counts = details["counts"]
    lines.append("Counts:   " + ", ".join(f"{name}={n}" for name, n in counts.items() if n))
    if not details["features"]:
        lines.append("No features yet. Start with: roleflow requirements <feature-id>")
        return "\n".join(lines)

    lines.append("")
    lines.append(f"{'FEATURE':<28} {'STATUS':<14} {'PASS':>5} {'FAIL':>5} {'PEND':>5}")
    for row in details["features"]:
        results = row["test_results"]
        lines.append(
            f"{row['feature_id']:<28} {row['status']:<14} "
            f"{results['passed']:>5} {results['failed']:>5} {results['pending']:>5}"
        )
        if row["failure_reason"]:
            lines.append(f"    reason: {row['failure_reason'][:100]}")

    if details["next"]:
        lines.append("")
        lines.append("Next:     " + ", ".join(details["next"]))
    if details["failed"]:
        lines.append("Failed:   " + ", ".join(details["failed"]) + "  (implement --retry)")
    return "\n".join(lines)
