"""Tracking of how pods sharing a topology spread constraint are spread."""

from __future__ import annotations

from collections.abc import Collection
from typing import Optional

from nodeprov.kube import Pod, TopologySpreadConstraint

_MAX_COUNT = 2**31 - 1


class TopologyGroup:
    """A set of pods that share one topology spread constraint."""

    def __init__(self, pod: Pod, constraint: TopologySpreadConstraint) -> None:
        self.constraint = constraint
        self.pods: list[Pod] = [pod]
        self._spread: dict[str, int] = {}

    def register(self, *domains: str) -> None:
        """Make the domains eligible, each starting with a count of zero."""
        for domain in domains:
            self._spread[domain] = 0

    def increment(self, domain: str) -> None:
        """Count one more pod in a registered domain; unknown domains are ignored."""
        if domain in self._spread:
            self._spread[domain] += 1

    def next_domain(self, requirement: Optional[Collection[str]]) -> str:
        """Choose the allowed domain with the fewest pods and count the pod in it.

        ``requirement`` of None allows every registered domain. When nothing is
        allowed the empty domain is returned.
        """
        min_domain = ""
        min_count = _MAX_COUNT
        for domain, count in self._spread.items():
            if requirement is not None and domain not in requirement:
                continue
            if count <= min_count:
                min_domain = domain
                min_count = count
        self._spread[min_domain] = self._spread.get(min_domain, 0) + 1
        return min_domain