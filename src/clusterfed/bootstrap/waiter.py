"""Readiness Waiter: bounded polling of label-selected pod sets.

A wait either returns (ready), raises ``WaitTimeoutError`` (deadline
elapsed), ``WaitCancelledError`` (caller set the cancel event) or
``TransportError`` (the API call itself failed).  Callers decide which of
these are fatal for their phase.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Any

from clusterfed.clients.kube import KubeClient
from clusterfed.errors import WaitCancelledError, WaitTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 2.0


def _pod_ready(pod: Any) -> bool:
    status = pod.status
    if status is None or status.phase != "Running":
        return False
    containers = status.container_statuses or []
    return bool(containers) and all(c.ready for c in containers)


class ReadinessWaiter:
    """Polls workload status in one namespace until it is ready.

    ``_clock`` and ``_sleep`` are injectable for tests.  When a cancel
    event is passed, it is used as the sleep primitive so a cancelled
    wait wakes up immediately.
    """

    def __init__(
        self,
        kube: KubeClient,
        namespace: str,
        interval: float = DEFAULT_POLL_INTERVAL,
        _clock: Callable[[], float] | None = None,
        _sleep: Callable[[float], None] | None = None,
    ) -> None:
        self._kube = kube
        self._namespace = namespace
        self._interval = interval
        self._clock = _clock or time.monotonic
        self._sleep = _sleep or time.sleep

    def wait_ready(
        self,
        label_selector: str,
        expected_count: int,
        timeout: float,
        cancel: threading.Event | None = None,
    ) -> None:
        """Block until *expected_count* selected pods are Running and ready.

        Raises:
            WaitTimeoutError: If the deadline elapses first.
            WaitCancelledError: If *cancel* is set while waiting.
            TransportError: If listing pods fails.
        """
        description = f"pods {label_selector} in {self._namespace}"

        def ready_count() -> int:
            pods = self._kube.call(
                f"list {description}",
                self._kube.core.list_namespaced_pod,
                namespace=self._namespace,
                label_selector=label_selector,
            )
            return sum(1 for pod in pods.items if _pod_ready(pod))

        self._poll(description, ready_count, expected_count, timeout, cancel)

    def wait_statefulset_ready(
        self,
        name: str,
        replicas: int,
        timeout: float,
        cancel: threading.Event | None = None,
    ) -> None:
        """Block until the stateful set reports *replicas* ready replicas."""
        description = f"statefulset {self._namespace}/{name}"

        def ready_count() -> int:
            sts = self._kube.call(
                f"read {description}",
                self._kube.apps.read_namespaced_stateful_set_status,
                name=name,
                namespace=self._namespace,
            )
            return (sts.status.ready_replicas or 0) if sts.status else 0

        self._poll(description, ready_count, replicas, timeout, cancel)

    def _poll(
        self,
        description: str,
        ready_count: Callable[[], int],
        expected: int,
        timeout: float,
        cancel: threading.Event | None,
    ) -> None:
        deadline = self._clock() + timeout
        while True:
            if cancel is not None and cancel.is_set():
                raise WaitCancelledError(f"Wait for {description} cancelled")

            ready = ready_count()
            if ready >= expected:
                logger.info("%s ready (%d/%d)", description, ready, expected)
                return

            remaining = deadline - self._clock()
            if remaining <= 0:
                raise WaitTimeoutError(
                    f"Timed out after {timeout:g}s waiting for {description} "
                    f"({ready}/{expected} ready)"
                )
            logger.debug("Waiting for %s (%d/%d ready)", description, ready, expected)
            self._pause(min(self._interval, remaining), cancel)

    def _pause(self, seconds: float, cancel: threading.Event | None) -> None:
        if cancel is not None:
            cancel.wait(seconds)
        else:
            self._sleep(seconds)
