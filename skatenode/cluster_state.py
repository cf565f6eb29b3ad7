"""Cluster-wide state: the nodes seen, their health, and where pods run."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Sequence

from skatenode.podman import PodmanPodInfo
from skatenode.ssh import HostInfo
from skatenode.state import NodeState, NodeStatus, ReconciledResult
from skatenode.util import slugify


class ClusterStateError(RuntimeError):
    """The cluster state could not be written."""


@dataclass
class ClusterState:
    """The known nodes of one cluster, cached between runs."""

    cluster_name: str
    nodes: list[NodeState] = field(default_factory=list)

    @classmethod
    def path(cls, cluster_name: str, cache_dir: str | Path) -> Path:
        """Where the state for ``cluster_name`` is cached."""
        return Path(cache_dir) / f"{slugify(cluster_name)}.state"

    def _to_dict(self) -> dict[str, Any]:
        return {
            "cluster_name": self.cluster_name,
            "nodes": [node.to_dict() for node in self.nodes],
        }

    @classmethod
    def _from_dict(cls, data: Mapping[str, Any]) -> "ClusterState":
        return cls(
            cluster_name=data["cluster_name"],
            nodes=[NodeState.from_dict(n) for n in data.get("nodes") or []],
        )

    def persist(self, cache_dir: str | Path) -> Path:
        """Write the state to the cache directory and return the file written."""
        target = self.path(self.cluster_name, cache_dir)
        try:
            payload = json.dumps(self._to_dict())
        except (TypeError, ValueError) as exc:
            raise ClusterStateError(f"failed to serialize state: {exc}") from exc
        try:
            target.write_text(payload, encoding="utf-8")
        except OSError as exc:
            raise ClusterStateError(f"failed to open or create state file: {exc}") from exc
        return target

    @classmethod
    def load(cls, cluster_name: str, cache_dir: str | Path) -> "ClusterState":
        """Read cached state; an unreadable or missing file gives an empty state."""
        source = cls.path(cluster_name, cache_dir)
        try:
            return cls._from_dict(json.loads(source.read_text(encoding="utf-8")))
        except (OSError, ValueError, KeyError, TypeError, AttributeError):
            return cls(cluster_name=cluster_name)

    def _find_index(self, node_name: str) -> int | None:
        return next(
            (i for i, node in enumerate(self.nodes) if node.node_name == node_name),
            None,
        )

    def reconcile_node(self, host_info: HostInfo) -> ReconciledResult:
        """Replace or add the node described by ``host_info``."""
        state = NodeState.from_host_info(host_info)
        index = self._find_index(host_info.node_name)
        if index is None:
            self.nodes.append(state)
            return ReconciledResult.added_one()
        self.nodes[index] = state
        return ReconciledResult.updated_one()

    def reconcile_all_nodes(
        self, config_node_names: Sequence[str], host_infos: Iterable[HostInfo]
    ) -> ReconciledResult:
        """Match the node list to the configured nodes and refresh their health."""
        host_infos = list(host_infos)
        state_names = {node.node_name for node in self.nodes}
        config_names = set(config_node_names)
        new = config_names - state_names
        orphaned = state_names - config_names

        self.nodes = [node for node in self.nodes if node.node_name not in orphaned]
        self.nodes.extend(
            NodeState(node_name=name, status=NodeStatus.UNKNOWN)
            for name in config_node_names
            if name in new
        )

        updated = 0
        for node in self.nodes:
            info = next((h for h in host_infos if h.node_name == node.node_name), None)
            if info is None:
                node.status = NodeStatus.UNKNOWN
                continue
            updated += 1
            problems = info.healthy()
            if problems:
                node.status, node.message = NodeStatus.UNHEALTHY, ". ".join(problems)
            else:
                node.status, node.message = NodeStatus.HEALTHY, None
            node.host_info = info

        return ReconciledResult(removed=len(orphaned), added=len(new), updated=updated)

    def filter_pods(
        self, predicate: Callable[[PodmanPodInfo], bool]
    ) -> list[tuple[PodmanPodInfo, NodeState]]:
        """Every matching pod paired with the node it runs on."""
        return [(pod, node) for node in self.nodes for pod in node.filter_pods(predicate)]

    def locate_pods(self, name: str, namespace: str) -> list[tuple[PodmanPodInfo, NodeState]]:
        """Pods named ``name.namespace`` in ``namespace``."""
        full_name = f"{name}.{namespace}"
        return self.filter_pods(
            lambda p: p.name == full_name and p.namespace() == namespace
        )

    def locate_deployment_pods(
        self, name: str, namespace: str
    ) -> list[tuple[PodmanPodInfo, NodeState]]:
        """Pods belonging to a deployment; ``name`` may carry a ``namespace.`` prefix."""
        name = name.removeprefix(f"{namespace}.")
        return self.filter_pods(
            lambda p: p.deployment() == name and p.namespace() == namespace
        )