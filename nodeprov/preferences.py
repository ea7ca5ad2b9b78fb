"""Iterative relaxation of soft scheduling preferences for pods that failed to schedule."""

from __future__ import annotations

import dataclasses
import json
import logging
import threading
from collections.abc import Iterable
from typing import Optional

from cachetools import TTLCache

from nodeprov.kube import Pod

log = logging.getLogger(__name__)

EXPIRATION_TTL = 5 * 60.0
_MAX_ENTRIES = 1 << 20


def _concise(term: object) -> str:
    return json.dumps(dataclasses.asdict(term), separators=(",", ":"))


class Preferences:
    """Remembers pod affinities and strips one preference each time a pod is seen again.

    Relaxation of a pod is forgotten once it has not been seen for ``ttl`` seconds.
    """

    def __init__(self, ttl: float = EXPIRATION_TTL) -> None:
        self._cache: TTLCache = TTLCache(maxsize=_MAX_ENTRIES, ttl=ttl)
        self._lock = threading.Lock()

    def relax(self, pods: Iterable[Pod]) -> None:
        """Remove one preference from each pod that has been seen before."""
        with self._lock:
            for pod in pods:
                try:
                    affinity = self._cache[pod.uid]
                except KeyError:
                    self._cache[pod.uid] = pod.affinity
                    continue
                pod.affinity = affinity
                if self._relax(pod):
                    self._cache[pod.uid] = pod.affinity

    def _relax(self, pod: Pod) -> bool:
        for remove in (self._remove_preferred_term, self._remove_required_term):
            reason = remove(pod)
            if reason is not None:
                log.debug(
                    "Relaxing soft constraints for %s/%s since it previously failed to schedule, removing: %s",
                    pod.namespace, pod.name, reason,
                )
                return True
        return False

    @staticmethod
    def _remove_preferred_term(pod: Pod) -> Optional[str]:
        if pod.affinity is None or pod.affinity.node_affinity is None:
            return None
        node_affinity = pod.affinity.node_affinity
        if not node_affinity.preferred:
            return None
        # Heaviest preferences go first so that lighter ones get tried.
        terms = sorted(node_affinity.preferred, key=lambda term: -term.weight)
        node_affinity.preferred = terms[1:]
        return (
            "spec.affinity.nodeAffinity.preferredDuringSchedulingIgnoredDuringExecution[0]="
            + _concise(terms[0])
        )

    @staticmethod
    def _remove_required_term(pod: Pod) -> Optional[str]:
        if pod.affinity is None or pod.affinity.node_affinity is None:
            return None
        node_affinity = pod.affinity.node_affinity
        terms = node_affinity.required or []
        # Required terms are ORed; the last one can never be removed.
        if len(terms) > 1:
            node_affinity.required = terms[1:]
            return (
                "spec.affinity.nodeAffinity.requiredDuringSchedulingIgnoredDuringExecution[0]="
                + _concise(terms[0])
            )
        return None