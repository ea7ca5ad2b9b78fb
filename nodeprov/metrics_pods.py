"""Pod counts per phase for the nodes of a provisioner."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable

from nodeprov.kube import Pod
from nodeprov.metrics_common import (
    METRIC_LABEL_PHASE,
    METRIC_LABEL_PROVISIONER,
    METRIC_SUBSYSTEM_PODS,
    GaugeVec,
    metric_name,
    publish_count,
)

PHASE_VALUES = ("Failed", "Pending", "Running", "Succeeded", "Unknown")

# Total pod count by phase and provisioner.
POD_COUNT_BY_PHASE_PROVISIONER = GaugeVec(
    metric_name(METRIC_SUBSYSTEM_PODS, "count"),
    [METRIC_LABEL_PHASE, METRIC_LABEL_PROVISIONER],
)


def publish_pod_counts(provisioner: str, pods: Iterable[Pod]) -> None:
    """Publish how many of the pods are in each known phase, zero included."""
    count_by_phase = Counter(pod.phase for pod in pods)
    for phase in PHASE_VALUES:
        labels = {
            METRIC_LABEL_PHASE: phase.lower(),
            METRIC_LABEL_PROVISIONER: provisioner,
        }
        publish_count(POD_COUNT_BY_PHASE_PROVISIONER, labels, count_by_phase[phase])