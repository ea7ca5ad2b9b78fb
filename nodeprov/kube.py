"""Cluster object model and an in-memory object store with field indexes."""

from __future__ import annotations

import threading
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Optional, Union

LABEL_HOSTNAME = "kubernetes.io/hostname"
LABEL_TOPOLOGY_ZONE = "topology.kubernetes.io/zone"
LABEL_INSTANCE_TYPE = "node.kubernetes.io/instance-type"
LABEL_ARCH = "kubernetes.io/arch"
LABEL_CAPACITY_TYPE = "karpenter.sh/capacity-type"
PROVISIONER_NAME_LABEL_KEY = "karpenter.sh/provisioner-name"
DEFAULT_PROVISIONER_NAME = "default"
NOT_READY_TAINT_KEY = "karpenter.sh/not-ready"
TERMINATION_FINALIZER = "karpenter.sh/termination"

RESOURCE_CPU = "cpu"
RESOURCE_MEMORY = "memory"
RESOURCE_PODS = "pods"
RESOURCE_NVIDIA_GPU = "nvidia.com/gpu"
RESOURCE_AMD_GPU = "amd.com/gpu"
RESOURCE_AWS_NEURON = "aws.amazon.com/neuron"

OP_IN = "In"
OP_NOT_IN = "NotIn"
OP_EXISTS = "Exists"
OP_DOES_NOT_EXIST = "DoesNotExist"
OP_GT = "Gt"
OP_LT = "Lt"

POD_SCHEDULED = "PodScheduled"
POD_REASON_UNSCHEDULABLE = "Unschedulable"
NODE_READY = "Ready"

NODE_NAME_FIELD = "spec.nodeName"

ResourceList = dict[str, float]


def _generated_name(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:10]}"


@dataclass
class NodeSelectorRequirement:
    key: str
    operator: str
    values: list[str] = field(default_factory=list)


@dataclass
class NodeSelectorTerm:
    match_expressions: list[NodeSelectorRequirement] = field(default_factory=list)
    match_fields: Optional[list[NodeSelectorRequirement]] = None


@dataclass
class PreferredSchedulingTerm:
    weight: int
    preference: NodeSelectorTerm


@dataclass
class NodeAffinity:
    required: Optional[list[NodeSelectorTerm]] = None
    preferred: list[PreferredSchedulingTerm] = field(default_factory=list)


@dataclass
class Affinity:
    node_affinity: Optional[NodeAffinity] = None
    pod_affinity: Any = None
    pod_anti_affinity: Any = None


@dataclass
class TopologySpreadConstraint:
    topology_key: str
    max_skew: int = 1
    when_unsatisfiable: str = "DoNotSchedule"
    label_selector: Optional[dict[str, str]] = None


@dataclass
class OwnerReference:
    api_version: str
    kind: str
    name: str = ""


@dataclass
class Container:
    """A container; limits stand in for requests that are not given."""

    name: str = "main"
    requests: ResourceList = field(default_factory=dict)
    limits: ResourceList = field(default_factory=dict)

    def __post_init__(self) -> None:
        for resource, quantity in self.limits.items():
            self.requests.setdefault(resource, quantity)


@dataclass
class PodCondition:
    type: str
    status: str
    reason: str = ""


@dataclass(eq=False)
class Pod:
    name: str = field(default_factory=lambda: _generated_name("pod"))
    namespace: str = "default"
    uid: str = field(default_factory=lambda: str(uuid.uuid4()))
    labels: dict[str, str] = field(default_factory=dict)
    node_name: str = ""
    node_selector: dict[str, str] = field(default_factory=dict)
    affinity: Optional[Affinity] = None
    topology_spread_constraints: list[TopologySpreadConstraint] = field(default_factory=list)
    tolerations: list[Any] = field(default_factory=list)
    containers: list[Container] = field(default_factory=lambda: [Container()])
    owner_references: list[OwnerReference] = field(default_factory=list)
    conditions: list[PodCondition] = field(default_factory=list)
    phase: str = "Pending"

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass
class NodeCondition:
    type: str
    status: str


@dataclass(eq=False)
class Node:
    name: str = field(default_factory=lambda: _generated_name("node"))
    labels: dict[str, str] = field(default_factory=dict)
    taints: list[Any] = field(default_factory=list)
    conditions: list[NodeCondition] = field(default_factory=list)
    allocatable: ResourceList = field(default_factory=dict)
    finalizers: list[str] = field(default_factory=list)


@dataclass(eq=False)
class Provisioner:
    name: str = DEFAULT_PROVISIONER_NAME
    uid: str = field(default_factory=lambda: str(uuid.uuid4()))
    labels: dict[str, str] = field(default_factory=dict)
    taints: list[Any] = field(default_factory=list)
    requirements: list[NodeSelectorRequirement] = field(default_factory=list)


class NotFoundError(LookupError):
    """Raised when a requested object does not exist."""


def pod_scheduling_index(obj: object) -> list[str]:
    """Index values of an object for the node name field."""
    if not isinstance(obj, Pod):
        return []
    return [obj.node_name]


def requests_for_pods(*pods: Pod) -> ResourceList:
    """Sum the resource requests of all containers of the given pods."""
    total: ResourceList = {}
    for pod in pods:
        for container in pod.containers:
            for resource, quantity in container.requests.items():
                total[resource] = total.get(resource, 0) + quantity
    return total


def failed_to_schedule(pod: Pod) -> bool:
    return any(
        condition.type == POD_SCHEDULED and condition.reason == POD_REASON_UNSCHEDULABLE
        for condition in pod.conditions
    )


def is_owned_by_daemonset(pod: Pod) -> bool:
    return any(owner.kind == "DaemonSet" for owner in pod.owner_references)


def is_owned_by_node(pod: Pod) -> bool:
    return any(owner.kind == "Node" for owner in pod.owner_references)


def _labels_match(labels: Mapping[str, str], selector: Optional[Mapping[str, str]]) -> bool:
    if not selector:
        return True
    return all(labels.get(key) == value for key, value in selector.items())


Stored = Union[Pod, Node, Provisioner]


class InMemoryClient:
    """A thread-safe object store for pods, nodes and provisioners."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._pods: dict[tuple[str, str], Pod] = {}
        self._nodes: dict[str, Node] = {}
        self._provisioners: dict[str, Provisioner] = {}
        self._indexes: dict[str, Callable[[object], list[str]]] = {}
        self.index_field(NODE_NAME_FIELD, pod_scheduling_index)

    def index_field(self, field: str, extractor: Callable[[object], list[str]]) -> None:
        """Register a pod field that list_pods can match on."""
        with self._lock:
            self._indexes[field] = extractor

    def create(self, obj: Stored) -> Stored:
        with self._lock:
            if isinstance(obj, Pod):
                store, key = self._pods, (obj.namespace, obj.name)
            elif isinstance(obj, Node):
                store, key = self._nodes, obj.name
            elif isinstance(obj, Provisioner):
                store, key = self._provisioners, obj.name
            else:
                raise TypeError(f"unsupported object type {type(obj).__name__}")
            if key in store:
                raise ValueError(f"{type(obj).__name__.lower()} {obj.name} already exists")
            store[key] = obj
            return obj

    def get_provisioner(self, name: str) -> Provisioner:
        with self._lock:
            try:
                return self._provisioners[name]
            except KeyError:
                raise NotFoundError(f'provisioner "{name}" not found') from None

    def get_node(self, name: str) -> Node:
        with self._lock:
            try:
                return self._nodes[name]
            except KeyError:
                raise NotFoundError(f'node "{name}" not found') from None

    def list_pods(
        self,
        namespace: Optional[str] = None,
        matching_fields: Optional[Mapping[str, str]] = None,
        matching_labels: Optional[Mapping[str, str]] = None,
    ) -> list[Pod]:
        with self._lock:
            extractors = {}
            for name in matching_fields or {}:
                if name not in self._indexes:
                    raise ValueError(f"index with name field:{name} does not exist")
                extractors[name] = self._indexes[name]
            return [
                pod
                for pod in self._pods.values()
                if (namespace is None or pod.namespace == namespace)
                and _labels_match(pod.labels, matching_labels)
                and all(
                    value in extractors[name](pod)
                    for name, value in (matching_fields or {}).items()
                )
            ]

    def list_nodes(self, matching_labels: Optional[Mapping[str, str]] = None) -> list[Node]:
        with self._lock:
            return [node for node in self._nodes.values() if _labels_match(node.labels, matching_labels)]