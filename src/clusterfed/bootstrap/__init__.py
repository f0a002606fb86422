"""Control-plane bootstrap: pre-flight, PKI, manifests and phased install.

Entry points: BootstrapOrchestrator, install_control_plane, teardown_control_plane.
"""

from clusterfed.bootstrap.options import BootstrapConfig, merge_bootstrap_config
from clusterfed.bootstrap.orchestrator import (
    PHASES,
    BootstrapOrchestrator,
    BootstrapState,
    install_control_plane,
)
from clusterfed.bootstrap.teardown import teardown_control_plane
from clusterfed.bootstrap.waiter import ReadinessWaiter

__all__ = [
    "PHASES",
    "BootstrapConfig",
    "BootstrapOrchestrator",
    "BootstrapState",
    "ReadinessWaiter",
    "install_control_plane",
    "merge_bootstrap_config",
    "teardown_control_plane",
]
