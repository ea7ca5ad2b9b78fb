"""Selection of pending pods that a provisioner can launch capacity for."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import Any

from nodeprov.kube import (
    DEFAULT_PROVISIONER_NAME,
    LABEL_HOSTNAME,
    LABEL_TOPOLOGY_ZONE,
    NODE_NAME_FIELD,
    OP_IN,
    OP_NOT_IN,
    PROVISIONER_NAME_LABEL_KEY,
    InMemoryClient,
    NodeSelectorTerm,
    Pod,
    failed_to_schedule,
    is_owned_by_daemonset,
    is_owned_by_node,
)

log = logging.getLogger(__name__)

_SUPPORTED_TOPOLOGY_KEYS = frozenset({LABEL_HOSTNAME, LABEL_TOPOLOGY_ZONE})
_SUPPORTED_OPERATORS = frozenset({OP_IN, OP_NOT_IN})


class FilterError(Exception):
    """One or more reasons why a pod cannot be provisioned for."""

    def __init__(self, errors: Iterable[str]) -> None:
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


def _raise_if_any(errors: list[str]) -> None:
    if errors:
        raise FilterError(errors)


def _collect(check: Callable[..., Any], *args: Any) -> list[str]:
    try:
        check(*args)
    except FilterError as error:
        return error.errors
    return []


def validate_node_selector_term(term: NodeSelectorTerm) -> None:
    errors = []
    if term.match_fields is not None:
        errors.append("matchFields is not supported")
    for requirement in term.match_expressions or []:
        if requirement.operator not in _SUPPORTED_OPERATORS:
            errors.append(f"unsupported operator, {requirement.operator}")
    _raise_if_any(errors)


class Filter:
    """Decides which pending pods a provisioner should launch nodes for."""

    def __init__(self, client: InMemoryClient) -> None:
        self.client = client

    def get_provisionable_pods(self, provisioner_name: str) -> list[Pod]:
        provisionable = []
        for pod in self.client.list_pods(matching_fields={NODE_NAME_FIELD: ""}):
            try:
                self.is_provisionable(pod, provisioner_name)
            except FilterError as error:
                log.debug(
                    "Ignored pod %s/%s when allocating for provisioner %s, %s",
                    pod.name, pod.namespace, provisioner_name, error,
                )
                continue
            provisionable.append(pod)
        return provisionable

    def is_provisionable(self, pod: Pod, provisioner_name: str) -> None:
        errors = [
            *_collect(self.is_unschedulable, pod),
            *_collect(self.validate_affinity, pod),
            *_collect(self.validate_topology, pod),
            *_collect(self.matches_provisioner, pod, provisioner_name),
        ]
        _raise_if_any(errors)

    def is_unschedulable(self, pod: Pod) -> None:
        if not failed_to_schedule(pod):
            raise FilterError(["awaiting scheduling"])
        if is_owned_by_daemonset(pod):
            raise FilterError(["owned by daemonset"])
        if is_owned_by_node(pod):
            raise FilterError(["owned by node"])

    def matches_provisioner(self, pod: Pod, provisioner_name: str) -> None:
        name = pod.node_selector.get(PROVISIONER_NAME_LABEL_KEY)
        if name is not None and name == provisioner_name:
            return
        if name is None and provisioner_name == DEFAULT_PROVISIONER_NAME:
            return
        raise FilterError([f"matched another provisioner, {name or ''}"])

    def validate_topology(self, pod: Pod) -> None:
        supported = sorted(_SUPPORTED_TOPOLOGY_KEYS)
        _raise_if_any([
            f"unsupported topology key, {constraint.topology_key} not in {supported}"
            for constraint in pod.topology_spread_constraints
            if constraint.topology_key not in _SUPPORTED_TOPOLOGY_KEYS
        ])

    def validate_affinity(self, pod: Pod) -> None:
        affinity = pod.affinity
        if affinity is None:
            return
        errors = []
        if affinity.pod_affinity is not None:
            errors.append("pod affinity is not supported")
        if affinity.pod_anti_affinity is not None:
            errors.append("pod anti-affinity is not supported")
        node_affinity = affinity.node_affinity
        if node_affinity is not None:
            for preferred in node_affinity.preferred:
                errors.extend(_collect(validate_node_selector_term, preferred.preference))
            for term in node_affinity.required or []:
                errors.extend(_collect(validate_node_selector_term, term))
        _raise_if_any(errors)