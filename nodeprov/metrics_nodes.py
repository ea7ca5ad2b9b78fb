"""Node counts per provisioner, zone, architecture and instance type."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from typing import Optional

from nodeprov.kube import Node
from nodeprov.metrics_common import (
    METRIC_LABEL_ARCH,
    METRIC_LABEL_INSTANCE_TYPE,
    METRIC_LABEL_PROVISIONER,
    METRIC_LABEL_ZONE,
    METRIC_SUBSYSTEM_CAPACITY,
    NODE_CONDITION_TYPE_READY,
    NODE_LABEL_ARCH,
    NODE_LABEL_INSTANCE_TYPE,
    NODE_LABEL_PROVISIONER,
    NODE_LABEL_ZONE,
    GaugeVec,
    metric_name,
    publish_count,
)

NodeListConsumer = Callable[[list[Node]], None]
ConsumeNodesWith = Callable[[Mapping[str, str], NodeListConsumer], None]

# Total node count by provisioner.
NODE_COUNT_BY_PROVISIONER = GaugeVec(
    metric_name(METRIC_SUBSYSTEM_CAPACITY, "node_count"),
    [METRIC_LABEL_PROVISIONER],
)

# Count of nodes that are ready by provisioner and zone.
READY_NODE_COUNT_BY_PROVISIONER_ZONE = GaugeVec(
    metric_name(METRIC_SUBSYSTEM_CAPACITY, "ready_node_count"),
    [METRIC_LABEL_PROVISIONER, METRIC_LABEL_ZONE],
)

# Count of nodes that are ready by architecture, provisioner, and zone.
READY_NODE_COUNT_BY_ARCH_PROVISIONER_ZONE = GaugeVec(
    metric_name(METRIC_SUBSYSTEM_CAPACITY, "ready_node_arch_count"),
    [METRIC_LABEL_ARCH, METRIC_LABEL_PROVISIONER, METRIC_LABEL_ZONE],
)

# Count of nodes that are ready by instance type, provisioner, and zone.
READY_NODE_COUNT_BY_INSTANCETYPE_PROVISIONER_ZONE = GaugeVec(
    metric_name(METRIC_SUBSYSTEM_CAPACITY, "ready_node_instancetype_count"),
    [METRIC_LABEL_INSTANCE_TYPE, METRIC_LABEL_PROVISIONER, METRIC_LABEL_ZONE],
)

# Count of nodes that are ready by provisioner, and zone.
READY_NODE_COUNT_BY_OS_PROVISIONER_ZONE = GaugeVec(
    metric_name(METRIC_SUBSYSTEM_CAPACITY, "ready_node_os_count"),
    [METRIC_LABEL_PROVISIONER, METRIC_LABEL_ZONE],
)


def _raise_combined(errors: Iterable[Optional[BaseException]]) -> None:
    """Raise nothing, the single error, or one error naming all of them."""
    errors = [error for error in errors if error is not None]
    if not errors:
        return
    if len(errors) == 1:
        raise errors[0]
    raise RuntimeError("; ".join(str(error) for error in errors)) from errors[0]


def metric_labels_from(node_labels: Mapping[str, str]) -> dict[str, str]:
    """Metric labels for the node labels that are present and not empty."""
    pairs = (
        (NODE_LABEL_ARCH, METRIC_LABEL_ARCH),
        (NODE_LABEL_INSTANCE_TYPE, METRIC_LABEL_INSTANCE_TYPE),
        (NODE_LABEL_PROVISIONER, METRIC_LABEL_PROVISIONER),
        (NODE_LABEL_ZONE, METRIC_LABEL_ZONE),
    )
    return {
        metric_label: node_labels[node_label]
        for node_label, metric_label in pairs
        if node_labels.get(node_label)
    }


def filter_ready_nodes(consume: NodeListConsumer) -> NodeListConsumer:
    """Wrap a consumer so that it only receives nodes that are ready."""

    def consume_ready(nodes: list[Node]) -> None:
        ready = [
            node
            for node in nodes
            for condition in node.conditions
            if condition.type == NODE_CONDITION_TYPE_READY and condition.status.lower() == "true"
        ]
        consume(ready)

    return consume_ready


def _publisher(gauge: GaugeVec, node_labels: Mapping[str, str]) -> NodeListConsumer:
    labels = metric_labels_from(node_labels)

    def publish(nodes: list[Node]) -> None:
        publish_count(gauge, labels, len(nodes))

    return publish


def publish_node_counts(
    provisioner: str,
    known_values: Mapping[str, Iterable[str]],
    consume_nodes_with: ConsumeNodesWith,
) -> None:
    """Publish node counts for every known zone, architecture and instance type.

    ``known_values`` maps node label keys to the values worth counting;
    ``consume_nodes_with(labels, consume)`` hands the nodes carrying the labels
    to ``consume``. Every count is attempted; failures are raised together.
    """
    arch_values = sorted(set(known_values.get(NODE_LABEL_ARCH, ())))
    instance_type_values = sorted(set(known_values.get(NODE_LABEL_INSTANCE_TYPE, ())))
    zone_values = sorted(set(known_values.get(NODE_LABEL_ZONE, ())))

    errors: list[BaseException] = []

    def attempt(node_labels: dict[str, str], consume: NodeListConsumer) -> None:
        try:
            consume_nodes_with(node_labels, consume)
        except Exception as error:  # every count is tried; errors are combined
            errors.append(error)

    node_labels = {NODE_LABEL_PROVISIONER: provisioner}
    attempt(node_labels, _publisher(NODE_COUNT_BY_PROVISIONER, node_labels))

    for zone in zone_values:
        zone_labels = {NODE_LABEL_PROVISIONER: provisioner, NODE_LABEL_ZONE: zone}
        attempt(
            zone_labels,
            filter_ready_nodes(_publisher(READY_NODE_COUNT_BY_PROVISIONER_ZONE, zone_labels)),
        )
        for arch in arch_values:
            arch_labels = {**zone_labels, NODE_LABEL_ARCH: arch}
            attempt(
                arch_labels,
                filter_ready_nodes(_publisher(READY_NODE_COUNT_BY_ARCH_PROVISIONER_ZONE, arch_labels)),
            )
        for instance_type in instance_type_values:
            type_labels = {**zone_labels, NODE_LABEL_INSTANCE_TYPE: instance_type}
            attempt(
                type_labels,
                filter_ready_nodes(
                    _publisher(READY_NODE_COUNT_BY_INSTANCETYPE_PROVISIONER_ZONE, type_labels)
                ),
            )

    _raise_combined(errors)