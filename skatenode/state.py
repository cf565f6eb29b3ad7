"""Per-node state: health, schedulability, pods and the Kubernetes Node view."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping

from skatenode.podman import PodmanPodInfo
from skatenode.ssh import HostInfo


class NodeStatus(Enum):
    UNKNOWN = "Unknown"
    HEALTHY = "Healthy"
    UNHEALTHY = "Unhealthy"

    def __str__(self) -> str:
        return self.value


_PHASES = {
    NodeStatus.UNKNOWN: "Pending",
    NodeStatus.HEALTHY: "Ready",
    NodeStatus.UNHEALTHY: "Pending",
}


@dataclass
class ReconciledResult:
    """How many items a reconciliation removed, added and updated."""

    removed: int = 0
    added: int = 0
    updated: int = 0

    @classmethod
    def added_one(cls) -> "ReconciledResult":
        return cls(added=1)

    @classmethod
    def removed_one(cls) -> "ReconciledResult":
        return cls(removed=1)

    @classmethod
    def updated_one(cls) -> "ReconciledResult":
        return cls(updated=1)


def _format_number(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


@dataclass
class NodeState:
    node_name: str
    status: NodeStatus = NodeStatus.UNKNOWN
    message: str | None = None
    host_info: HostInfo | None = None

    @classmethod
    def from_host_info(cls, host_info: HostInfo) -> "NodeState":
        """Node state judged healthy or unhealthy from what the host reported."""
        problems = host_info.healthy()
        if problems:
            status, message = NodeStatus.UNHEALTHY, ". ".join(problems)
        else:
            status, message = NodeStatus.HEALTHY, None
        return cls(
            node_name=host_info.node_name,
            status=status,
            message=message,
            host_info=host_info,
        )

    @property
    def _system_info(self) -> dict[str, Any] | None:
        return self.host_info.system_info if self.host_info is not None else None

    def schedulable(self) -> bool:
        """Whether workloads may be scheduled on this node."""
        if self.status is not NodeStatus.HEALTHY:
            return False
        system_info = self._system_info
        if system_info is None:
            return True
        return not system_info.get("cordoned", False)

    def pods(self) -> list[PodmanPodInfo]:
        """The pods the node reported, or an empty list."""
        system_info = self._system_info
        if system_info is None:
            return []
        return [PodmanPodInfo.from_dict(p) for p in system_info.get("pods") or []]

    def filter_pods(self, predicate: Callable[[PodmanPodInfo], bool]) -> list[PodmanPodInfo]:
        return [pod for pod in self.pods() if predicate(pod)]

    def reconcile_pod_creation(self, pod: PodmanPodInfo) -> ReconciledResult:
        """Record a newly created pod, where the node keeps a pod list."""
        system_info = self._system_info
        if system_info is not None and system_info.get("pods") is not None:
            system_info["pods"].append(pod.to_dict())
        return ReconciledResult.added_one()

    def reconcile_pod_deletion(self, pod: PodmanPodInfo) -> ReconciledResult:
        """Forget every pod with the same name as ``pod``."""
        system_info = self._system_info
        if system_info is not None and system_info.get("pods") is not None:
            system_info["pods"] = [
                p for p in system_info["pods"] if p.get("Name") != pod.name
            ]
        return ReconciledResult.removed_one()

    def to_k8s_node(self) -> dict[str, Any]:
        """Render as a Kubernetes Node object."""
        metadata: dict[str, Any] = {
            "name": self.node_name,
            "namespace": "default",
            "uid": self.node_name,
        }
        status: dict[str, Any] = {"phase": _PHASES[self.status]}
        system_info = self._system_info
        if system_info is not None:
            num_cpus = system_info.get("num_cpus", 0)
            total_memory = system_info.get("total_memory_mib", 0)
            used_memory = system_info.get("used_memory_mib", 0)
            cpu_usage = system_info.get("cpu_usage", 0.0)
            hostname = system_info.get("hostname", "")
            status["capacity"] = {
                "cpu": str(num_cpus),
                "memory": f"{total_memory} Mib",
            }
            status["allocatable"] = {
                "cpu": _format_number(num_cpus * (100.0 - cpu_usage) / 100.0),
                "memory": f"{total_memory - used_memory} Mib",
            }
            addresses = [{"address": hostname, "type": "Hostname"}]
            internal_ip = system_info.get("internal_ip_address")
            if internal_ip is not None:
                addresses.append({"address": internal_ip, "type": "InternalIP"})
            status["addresses"] = addresses
            metadata["labels"] = {
                "skate.io/arch": (system_info.get("platform") or {}).get("arch", ""),
                "skate.io/hostname": hostname,
                "skate.io/nodename": self.node_name,
            }
        return {
            "apiVersion": "v1",
            "kind": "Node",
            "metadata": metadata,
            "spec": {"unschedulable": not self.schedulable()},
            "status": status,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "node_name": self.node_name,
            "status": self.status.value,
            "message": self.message,
            "host_info": None if self.host_info is None else self.host_info.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "NodeState":
        host_info = data.get("host_info")
        return cls(
            node_name=data.get("node_name", ""),
            status=NodeStatus(data.get("status", NodeStatus.UNKNOWN.value)),
            message=data.get("message"),
            host_info=None if host_info is None else HostInfo.from_dict(host_info),
        )