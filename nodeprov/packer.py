"""First-fit-decreasing bin packing of scheduled pods onto instance types."""

from __future__ import annotations

import dataclasses
import logging
import math
from collections import Counter
from collections.abc import Hashable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Optional

from nodeprov.kube import RESOURCE_CPU, RESOURCE_MEMORY, Pod, requests_for_pods
from nodeprov.packable import InstanceType, Packable, Schedule, packables_for

log = logging.getLogger(__name__)

MAX_INSTANCE_TYPES = 20
"""How many instance type options a packing offers the cloud provider at most."""

_GIGA = 10**9
_ACCELERATOR_WEIGHT = 1000


@dataclass(eq=False)
class Packing:
    """Pods that fit together, the nodes they need and the instance types that can hold them."""

    pods: list[list[Pod]] = field(default_factory=list)
    node_quantity: int = 1
    instance_type_options: list[InstanceType] = field(default_factory=list)
    constraints: Any = None


def _freeze(value: Any) -> Any:
    """A hashable form of a value in which sequences compare as sets."""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return (type(value).__name__, _freeze(dataclasses.asdict(value)))
    if isinstance(value, Mapping):
        return frozenset((key, _freeze(item)) for key, item in value.items())
    if isinstance(value, (list, tuple, set, frozenset)):
        return frozenset(_freeze(item) for item in value)
    return value


def _packing_key(packing: Packing) -> Optional[Hashable]:
    """Identity of a packing by its instance type options and constraints, or None."""
    try:
        key = (
            frozenset(_freeze(it) for it in packing.instance_type_options),
            _freeze(packing.constraints),
        )
        hash(key)
    except TypeError:
        return None
    return key


def _requested(pod: Pod) -> tuple[float, float]:
    requests = requests_for_pods(pod)
    return requests.get(RESOURCE_CPU, 0), requests.get(RESOURCE_MEMORY, 0)


def _flattened_len(groups: Iterable[Sequence[Pod]]) -> int:
    return sum(len(group) for group in groups)


def _names(instance_types: Iterable[InstanceType]) -> list[str]:
    return [instance_type.name for instance_type in instance_types]


def euclidean(*values: float) -> float:
    """Distance of the point from the origin."""
    return math.sqrt(sum(value**2 for value in values))


def weight_of(instance_type: InstanceType) -> float:
    """Size of an instance type where one CPU weighs as much as one gigabyte.

    Accelerators weigh a thousand times more so that they dominate.
    """
    return euclidean(
        math.ceil(instance_type.cpu),
        math.ceil(instance_type.memory / _GIGA),
        math.ceil(instance_type.nvidia_gpus) * _ACCELERATOR_WEIGHT,
        math.ceil(instance_type.amd_gpus) * _ACCELERATOR_WEIGHT,
        math.ceil(instance_type.aws_neurons) * _ACCELERATOR_WEIGHT,
    )


def sort_by_resources(instance_types: list[InstanceType]) -> None:
    """Sort instance types in place, smallest first."""
    instance_types.sort(key=weight_of)


class Packer:
    """Packs pods onto as few nodes as it can, offering several instance types per node."""

    def pack(self, schedule: Schedule, instance_types: Iterable[InstanceType]) -> list[Packing]:
        """Compute node packings for the schedule's pods.

        The schedule's pods are sorted in place, largest first by CPU and then
        memory. Pods that fit no instance type are left out. Identical packings
        are merged into one with a larger node quantity.
        """
        instance_types = list(instance_types)
        schedule.pods.sort(key=_requested, reverse=True)
        packs: dict[Hashable, Packing] = {}
        packings: list[Packing] = []
        remaining: list[Pod] = list(schedule.pods)
        while remaining:
            packables = packables_for(instance_types, schedule)
            packing, remaining = self.pack_with_largest_pod(schedule.constraints, remaining, packables)
            packed = _flattened_len(packing.pods)
            if packed == 0:
                log.error(
                    "Failed to compute packing, pod(s) %s did not fit in instance type option(s) %s",
                    [pod.key for pod in remaining],
                    [packable.name for packable in packables],
                )
                remaining = remaining[1:]
                continue
            key = _packing_key(packing)
            if key is not None:
                main = packs.get(key)
                if main is not None:
                    main.node_quantity += 1
                    main.pods.extend(packing.pods)
                    log.debug(
                        "Incremented node count to %d on packing for %d pod(s) with instance type option(s) %s",
                        main.node_quantity, packed, _names(main.instance_type_options),
                    )
                    continue
                packs[key] = packing
            packings.append(packing)
            log.info(
                "Computed packing for %d pod(s) with instance type option(s) %s",
                packed, _names(packing.instance_type_options),
            )
        return packings

    def pack_with_largest_pod(
        self,
        constraints: Any,
        pods: Sequence[Pod],
        packables: Iterable[Packable],
    ) -> tuple[Packing, list[Pod]]:
        """Pack as many of the pods as any one instance type holds.

        Returns the packing of one node and the pods left over. Instance types
        that hold exactly the same pods are kept as alternative options.
        """
        best_packed: list[Pod] = []
        best_instances: list[InstanceType] = []
        remaining: list[Pod] = list(pods)
        for packable in packables:
            result = packable.pack(pods)
            if not result.packed:
                continue
            if self.pods_match(best_packed, result.packed):
                best_instances.append(packable.instance_type)
            elif len(result.packed) > len(best_packed):
                best_packed = result.packed
                remaining = result.unpacked
                best_instances = [packable.instance_type]
        sort_by_resources(best_instances)
        # Keep provisioning requests small enough for the cloud provider.
        del best_instances[MAX_INSTANCE_TYPES:]
        packing = Packing(
            pods=[best_packed],
            node_quantity=1,
            instance_type_options=best_instances,
            constraints=constraints,
        )
        return packing, remaining

    def pods_match(self, first: Sequence[Pod], second: Sequence[Pod]) -> bool:
        """Whether both hold the same pods, regardless of order."""
        if len(first) != len(second):
            return False
        return Counter(pod.key for pod in first) == Counter(pod.key for pod in second)