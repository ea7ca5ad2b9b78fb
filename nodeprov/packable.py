"""Instance types as bins that pods can be packed into."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Optional

from nodeprov.kube import (
    RESOURCE_AMD_GPU,
    RESOURCE_AWS_NEURON,
    RESOURCE_CPU,
    RESOURCE_MEMORY,
    RESOURCE_NVIDIA_GPU,
    RESOURCE_PODS,
    Pod,
    ResourceList,
    requests_for_pods,
)

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Offering:
    """A zone and capacity type in which an instance type can be launched."""

    zone: str
    capacity_type: str = "on-demand"


@dataclass(eq=False)
class InstanceType:
    """The capacity of one kind of machine; memory is in bytes."""

    name: str
    architecture: str = "amd64"
    offerings: list[Offering] = field(default_factory=list)
    cpu: float = 0
    memory: float = 0
    pods: float = 0
    nvidia_gpus: float = 0
    amd_gpus: float = 0
    aws_neurons: float = 0
    overhead: ResourceList = field(default_factory=dict)


@dataclass
class Schedule:
    """Pods with equivalent scheduling constraints and the daemons that will run beside them.

    Each allowed set of None places no restriction on that dimension.
    """

    pods: list[Pod] = field(default_factory=list)
    daemons: list[Pod] = field(default_factory=list)
    zones: Optional[frozenset[str]] = None
    instance_types: Optional[frozenset[str]] = None
    architectures: Optional[frozenset[str]] = None
    capacity_types: Optional[frozenset[str]] = None
    constraints: Any = None


@dataclass
class PackResult:
    packed: list[Pod] = field(default_factory=list)
    unpacked: list[Pod] = field(default_factory=list)


def _merge(*lists: Mapping[str, float]) -> ResourceList:
    merged: ResourceList = {}
    for resources in lists:
        for name, quantity in resources.items():
            merged[name] = merged.get(name, 0) + quantity
    return merged


def _requests(pods: Iterable[Pod], resource: str) -> bool:
    return any(resource in container.requests for pod in pods for container in pod.containers)


class Packable:
    """An instance type together with the resources already reserved on it."""

    def __init__(self, instance_type: InstanceType) -> None:
        self.instance_type = instance_type
        self.reserved: ResourceList = {}
        self.total: ResourceList = {
            RESOURCE_CPU: instance_type.cpu,
            RESOURCE_MEMORY: instance_type.memory,
            RESOURCE_NVIDIA_GPU: instance_type.nvidia_gpus,
            RESOURCE_AMD_GPU: instance_type.amd_gpus,
            RESOURCE_AWS_NEURON: instance_type.aws_neurons,
            RESOURCE_PODS: instance_type.pods,
        }

    @property
    def name(self) -> str:
        return self.instance_type.name

    def __repr__(self) -> str:
        return f"Packable({self.name!r}, reserved={self.reserved!r})"

    def pack(self, pods: Sequence[Pod]) -> PackResult:
        """Reserve room for as many pods as fit, in order; the rest stay unpacked."""
        result = PackResult()
        for index, pod in enumerate(pods):
            if self.reserve_pod(pod):
                result.packed.append(pod)
                continue
            if self.fits(pods[-1]):
                result.unpacked.extend(pods[index:])
                return result
            # The largest pod cannot be packed at all: set everything aside.
            if not result.packed:
                result.unpacked.extend(pods)
                return result
            result.unpacked.append(pod)
        return result

    def fits(self, pod: Pod) -> bool:
        """Whether adding the pod reaches or passes the total of some non-empty resource."""
        requests = requests_for_pods(pod)
        for name, total in self.total.items():
            reserved = self.reserved.get(name, 0) + requests.get(name, 0)
            if total != 0 and reserved >= total:
                return True
        return False

    def reserve(self, requests: Mapping[str, float]) -> bool:
        """Reserve the resources if none would exceed the total; report success."""
        candidate = _merge(self.reserved, requests)
        if any(quantity > self.total.get(name, 0) for name, quantity in candidate.items()):
            return False
        self.reserved = candidate
        return True

    def reserve_pod(self, pod: Pod) -> bool:
        """Reserve a pod's requests plus one pod slot."""
        requests = requests_for_pods(pod)
        requests[RESOURCE_PODS] = 1
        return self.reserve(requests)

    def _violations(self, schedule: Schedule) -> Iterator[str]:
        it = self.instance_type
        zones = {offering.zone for offering in it.offerings}
        if schedule.zones is not None and not schedule.zones & zones:
            yield f"zones {sorted(zones)} are not in {sorted(schedule.zones)}"
        if schedule.instance_types is not None and it.name not in schedule.instance_types:
            yield f"instance type {it.name} is not in {sorted(schedule.instance_types)}"
        if schedule.architectures is not None and it.architecture not in schedule.architectures:
            yield f"architecture {it.architecture} is not in {sorted(schedule.architectures)}"
        capacity_types = {offering.capacity_type for offering in it.offerings}
        if schedule.capacity_types is not None and not schedule.capacity_types & capacity_types:
            yield f"capacity types {sorted(capacity_types)} are not in {sorted(schedule.capacity_types)}"
        # Accelerators that no pod asks for rule the instance type out.
        for amount, resource, label in (
            (it.nvidia_gpus, RESOURCE_NVIDIA_GPU, "nvidia gpu"),
            (it.amd_gpus, RESOURCE_AMD_GPU, "amd gpu"),
            (it.aws_neurons, RESOURCE_AWS_NEURON, "aws neuron"),
        ):
            if amount != 0 and not _requests(schedule.pods, resource):
                yield f"{label} is not required"


def packable_for(instance_type: InstanceType) -> Packable:
    return Packable(instance_type)


def packables_for(instance_types: Iterable[InstanceType], schedule: Schedule) -> list[Packable]:
    """Packables for the instance types that satisfy the schedule and hold its overhead."""
    packables = []
    for instance_type in instance_types:
        packable = packable_for(instance_type)
        violations = list(packable._violations(schedule))
        if violations:
            continue
        if not packable.reserve(instance_type.overhead):
            log.debug(
                "Excluding instance type %s because there are not enough resources "
                "for kubelet and system overhead",
                packable.name,
            )
            continue
        if packable.pack(schedule.daemons).unpacked:
            log.debug(
                "Excluding instance type %s because there are not enough resources for daemons",
                packable.name,
            )
            continue
        packables.append(packable)
    return packables