"""Gauges and the names shared by the cluster capacity metrics."""

from __future__ import annotations

import threading
from collections.abc import Iterable, Mapping

from nodeprov.kube import (
    LABEL_ARCH,
    LABEL_INSTANCE_TYPE,
    LABEL_TOPOLOGY_ZONE,
    NODE_READY,
    PROVISIONER_NAME_LABEL_KEY,
)

NAMESPACE = "karpenter"
PROVISIONER_LABEL = "provisioner"

CONTROLLER_NAME = "Metrics"

METRIC_SUBSYSTEM_CAPACITY = "capacity"
METRIC_SUBSYSTEM_PODS = "pods"

METRIC_LABEL_ARCH = "arch"
METRIC_LABEL_INSTANCE_TYPE = "instancetype"
METRIC_LABEL_PHASE = "phase"
METRIC_LABEL_PROVISIONER = PROVISIONER_LABEL
METRIC_LABEL_ZONE = "zone"

NODE_LABEL_ARCH = LABEL_ARCH
NODE_LABEL_INSTANCE_TYPE = LABEL_INSTANCE_TYPE
NODE_LABEL_ZONE = LABEL_TOPOLOGY_ZONE
NODE_LABEL_PROVISIONER = PROVISIONER_NAME_LABEL_KEY

NODE_CONDITION_TYPE_READY = NODE_READY


def metric_name(subsystem: str, name: str) -> str:
    return f"{NAMESPACE}_{subsystem}_{name}"


class GaugeVec:
    """A family of gauges, one per combination of label values."""

    description: str = ""

    def __init__(self, name: str, label_names: Iterable[str]) -> None:
        self.name = name
        self.label_names = tuple(label_names)
        self._values: dict[tuple[str, ...], float] = {}
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"GaugeVec({self.name!r}, {list(self.label_names)!r})"

    def _key(self, labels: Mapping[str, str]) -> tuple[str, ...]:
        if set(labels) != set(self.label_names):
            raise ValueError(
                f"inconsistent label cardinality for {self.name}: "
                f"expected {sorted(self.label_names)}, got {sorted(labels)}"
            )
        return tuple(labels[name] for name in self.label_names)

    def set(self, labels: Mapping[str, str], value: float) -> None:
        """Set the gauge for exactly these labels."""
        key = self._key(labels)
        with self._lock:
            self._values[key] = float(value)

    def get(self, labels: Mapping[str, str]) -> float:
        """The value of the gauge for these labels; KeyError if it was never set."""
        key = self._key(labels)
        with self._lock:
            try:
                return self._values[key]
            except KeyError:
                raise KeyError(f"no sample of {self.name} for {dict(labels)}") from None

    def samples(self) -> dict[tuple[str, ...], float]:
        """All values set so far, keyed by label values in label name order."""
        with self._lock:
            return dict(self._values)


def publish_count(gauge_vec: GaugeVec, labels: Mapping[str, str], count: int) -> None:
    """Set the gauge for the labels to the count; ValueError on labels that do not fit."""
    gauge_vec.set(labels, float(count))