"""Periodic publication of node and pod counts for each provisioner."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from nodeprov.kube import NODE_NAME_FIELD, InMemoryClient, NotFoundError, Pod, Provisioner
from nodeprov.metrics_common import (
    CONTROLLER_NAME,
    NODE_LABEL_ARCH,
    NODE_LABEL_INSTANCE_TYPE,
    NODE_LABEL_PROVISIONER,
    NODE_LABEL_ZONE,
)
from nodeprov.metrics_nodes import NodeListConsumer, _raise_combined, publish_node_counts
from nodeprov.metrics_pods import publish_pod_counts
from nodeprov.packable import InstanceType

log = logging.getLogger(__name__)

REQUEUE_AFTER = 10.0
"""Seconds until the counts of an existing provisioner are refreshed."""

InstanceTypesFor = Callable[[Provisioner], Iterable[InstanceType]]


class MetricsController:
    """Publishes capacity metrics for provisioners.

    ``instance_types_for(provisioner)`` returns the instance types that the
    provisioner can launch.
    """

    def __init__(self, client: InMemoryClient, instance_types_for: InstanceTypesFor) -> None:
        self.client = client
        self.instance_types_for = instance_types_for

    def reconcile(self, provisioner_name: str) -> Optional[float]:
        """Refresh the counts of a provisioner.

        Returns the seconds until the next refresh, or None when the
        provisioner no longer exists.
        """
        logger = log.getChild(f"{CONTROLLER_NAME.lower()}.provisioner/{provisioner_name}")
        try:
            provisioner = self.client.get_provisioner(provisioner_name)
        except NotFoundError:
            logger.debug("Provisioner %s is gone", provisioner_name)
            return None
        self.update_counts(provisioner)
        return REQUEUE_AFTER

    def update_counts(self, provisioner: Provisioner) -> None:
        """Update node and pod counts concurrently; failures are raised together."""
        updates = (self.update_node_counts, self.update_pod_counts)
        with ThreadPoolExecutor(max_workers=len(updates)) as executor:
            futures = [executor.submit(update, provisioner) for update in updates]
            errors = [future.exception() for future in futures]
        _raise_combined(errors)

    def update_node_counts(self, provisioner: Provisioner) -> None:
        instance_types = list(self.instance_types_for(provisioner))
        known_values = {
            NODE_LABEL_ARCH: {it.architecture for it in instance_types},
            NODE_LABEL_INSTANCE_TYPE: {it.name for it in instance_types},
            NODE_LABEL_ZONE: {
                offering.zone for it in instance_types for offering in it.offerings
            },
        }

        def consume_nodes_with(labels, consume: NodeListConsumer) -> None:
            consume(self.client.list_nodes(matching_labels=labels))

        publish_node_counts(provisioner.name, known_values, consume_nodes_with)

    def update_pod_counts(self, provisioner: Provisioner) -> None:
        publish_pod_counts(provisioner.name, self.pods_for_provisioner(provisioner))

    def pods_for_provisioner(self, provisioner: Provisioner) -> list[Pod]:
        """All pods bound to nodes that belong to the provisioner."""
        nodes = self.client.list_nodes(matching_labels={NODE_LABEL_PROVISIONER: provisioner.name})
        return [
            pod
            for node in nodes
            for pod in self.client.list_pods(matching_fields={NODE_NAME_FIELD: node.name})
        ]