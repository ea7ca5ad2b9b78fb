"""Turning topology spread constraints into just-in-time node selectors."""

from __future__ import annotations

import math
import random
import string
from collections.abc import Callable, Hashable, Iterable
from typing import Optional

from nodeprov.kube import (
    LABEL_HOSTNAME,
    LABEL_TOPOLOGY_ZONE,
    InMemoryClient,
    NotFoundError,
    Pod,
    TopologySpreadConstraint,
)
from nodeprov.topologygroup import TopologyGroup

DomainsFor = Callable[[Pod, str], Optional[Iterable[str]]]

_HOSTNAME_ALPHABET = string.ascii_lowercase + string.digits
_HOSTNAME_LENGTH = 8


def topology_group_key(namespace: str, constraint: TopologySpreadConstraint) -> Hashable:
    """A key that is equal for equal namespaces and constraints."""
    selector = constraint.label_selector
    return (
        namespace,
        constraint.topology_key,
        constraint.max_skew,
        constraint.when_unsatisfiable,
        None if selector is None else frozenset(selector.items()),
    )


def _random_hostname() -> str:
    return "".join(random.choices(_HOSTNAME_ALPHABET, k=_HOSTNAME_LENGTH))


class Topology:
    """Assigns topology domains to pods through their node selectors."""

    def __init__(self, client: InMemoryClient) -> None:
        self.client = client

    def inject(
        self,
        pods: Iterable[Pod],
        zones: Iterable[str],
        domains_for: Optional[DomainsFor] = None,
    ) -> None:
        """Give every pod with spread constraints a node selector for its domain.

        ``zones`` are the viable zones; ``domains_for(pod, topology_key)``
        returns the domains a pod may use for a key, or None for any.
        """
        zones = list(zones)
        for group in self.get_topology_groups(pods):
            key = group.constraint.topology_key
            if key == LABEL_HOSTNAME:
                self.compute_hostname_topology(group)
            elif key == LABEL_TOPOLOGY_ZONE:
                self.compute_zonal_topology(zones, group)
            for pod in group.pods:
                allowed = domains_for(pod, key) if domains_for is not None else None
                if allowed is not None:
                    allowed = set(allowed)
                domain = group.next_domain(allowed)
                pod.node_selector = {**pod.node_selector, key: domain}

    def get_topology_groups(self, pods: Iterable[Pod]) -> list[TopologyGroup]:
        """Group pods by namespace and equivalent spread constraint."""
        groups: dict[Hashable, TopologyGroup] = {}
        for pod in pods:
            for constraint in pod.topology_spread_constraints:
                key = topology_group_key(pod.namespace, constraint)
                group = groups.get(key)
                if group is None:
                    groups[key] = TopologyGroup(pod, constraint)
                else:
                    group.pods.append(pod)
        return list(groups.values())

    def compute_hostname_topology(self, group: TopologyGroup) -> list[str]:
        """Register fresh hostnames, enough that no hostname exceeds the max skew.

        New nodes hold no pods, so the global minimum for hostnames is zero and
        every new hostname can take up to ``max_skew`` pods.
        """
        count = math.ceil(len(group.pods) / group.constraint.max_skew)
        domains = [_random_hostname() for _ in range(count)]
        group.register(*domains)
        return domains

    def compute_zonal_topology(self, zones: Iterable[str], group: TopologyGroup) -> None:
        """Register the viable zones and count the pods already placed in them."""
        group.register(*zones)
        self.count_matching_pods(group)

    def count_matching_pods(self, group: TopologyGroup) -> None:
        """Count scheduled pods matching the selector in each node's domain."""
        key = group.constraint.topology_key
        pods = self.client.list_pods(
            namespace=group.pods[0].namespace,
            matching_labels=group.constraint.label_selector,
        )
        for pod in pods:
            if not pod.node_name:
                continue
            try:
                node = self.client.get_node(pod.node_name)
            except NotFoundError as error:
                raise NotFoundError(f"getting node {pod.node_name}, {error}") from error
            domain = node.labels.get(key)
            if domain is None:
                continue
            group.increment(domain)