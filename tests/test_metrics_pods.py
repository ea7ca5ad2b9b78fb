import uuid

from nodeprov.kube import Pod
from nodeprov.metrics_pods import (
    PHASE_VALUES,
    POD_COUNT_BY_PHASE_PROVISIONER,
    publish_pod_counts,
)


def _name():
    return f"prov-{uuid.uuid4().hex[:8]}"


def _count(phase, provisioner):
    return POD_COUNT_BY_PHASE_PROVISIONER.get({"phase": phase, "provisioner": provisioner})


def test_publishing_fills_the_pod_count_metric():
    provisioner = _name()
    publish_pod_counts(provisioner, [Pod(phase="Running")])
    assert POD_COUNT_BY_PHASE_PROVISIONER.name == "karpenter_pods_count"
    keys = [key for key in POD_COUNT_BY_PHASE_PROVISIONER.samples() if provisioner in key]
    assert len(keys) == len(PHASE_VALUES)


def test_counts_pods_per_phase():
    provisioner = _name()
    running = [Pod(phase="Running") for _ in range(2)]
    pending = [Pod(phase="Pending")]
    publish_pod_counts(provisioner, running + pending)
    assert _count("running", provisioner) == len(running)
    assert _count("pending", provisioner) == len(pending)


def test_every_phase_is_published_even_when_empty():
    provisioner = _name()
    publish_pod_counts(provisioner, [])
    for phase in PHASE_VALUES:
        assert _count(phase.lower(), provisioner) == 0.0


def test_unknown_phases_are_not_counted():
    provisioner = _name()
    publish_pod_counts(provisioner, [Pod(phase="Evicted"), Pod(phase="Succeeded")])
    total = sum(_count(phase.lower(), provisioner) for phase in PHASE_VALUES)
    assert total == 1.0
    assert _count("succeeded", provisioner) == 1.0


def test_provisioners_are_kept_apart():
    first, second = _name(), _name()
    publish_pod_counts(first, [Pod(phase="Failed")])
    publish_pod_counts(second, [])
    assert _count("failed", first) == 1.0
    assert _count("failed", second) == 0.0


def test_republishing_replaces_counts():
    provisioner = _name()
    publish_pod_counts(provisioner, [Pod(phase="Running")])
    publish_pod_counts(provisioner, [])
    assert _count("running", provisioner) == 0.0