"""Podman pod, container and secret records and their Kubernetes mapping."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping

_FRACTION = re.compile(r"\.(\d+)")

NODESELECTOR_PREFIX = "nodeselector/"


def parse_timestamp(text: str) -> datetime:
    """Parse an RFC 3339 timestamp (any fraction length) into local time."""
    value = text.strip()
    if value.endswith(("Z", "z")):
        value = value[:-1] + "+00:00"
    value = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), value, count=1)
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as exc:
        raise ValueError(f"invalid timestamp: {text!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone()


def _k8s_time(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _require(data: Mapping[str, Any], key: str) -> Any:
    try:
        return data[key]
    except KeyError:
        raise ValueError(f"missing field {key!r}") from None


class PodmanPodStatus(Enum):
    CREATED = "Created"
    RUNNING = "Running"
    STOPPED = "Stopped"
    EXITED = "Exited"
    DEAD = "Dead"
    DEGRADED = "Degraded"
    ERROR = "Error"

    def __str__(self) -> str:
        return self.value

    def to_pod_phase(self) -> str:
        """The Kubernetes pod phase for this status."""
        return _TO_PHASE[self]

    @classmethod
    def from_pod_phase(cls, phase: str) -> "PodmanPodStatus":
        """Status for a Kubernetes phase; unknown phases become CREATED."""
        return _FROM_PHASE.get(phase, cls.CREATED)


_TO_PHASE = {
    PodmanPodStatus.RUNNING: "Running",
    PodmanPodStatus.STOPPED: "Succeeded",
    PodmanPodStatus.EXITED: "Succeeded",
    PodmanPodStatus.DEAD: "Failed",
    PodmanPodStatus.DEGRADED: "Running",
    PodmanPodStatus.CREATED: "Pending",
    PodmanPodStatus.ERROR: "Failed",
}

_FROM_PHASE = {
    "Running": PodmanPodStatus.RUNNING,
    "Succeeded": PodmanPodStatus.EXITED,
    "Failed": PodmanPodStatus.DEAD,
    "Pending": PodmanPodStatus.CREATED,
}


@dataclass
class PodmanSecretDriver:
    name: str
    options: dict[str, str] = field(default_factory=dict)


@dataclass
class PodmanSecretSpec:
    name: str
    driver: PodmanSecretDriver
    labels: dict[str, str] = field(default_factory=dict)


@dataclass
class PodmanSecret:
    id: str
    created_at: datetime
    updated_at: datetime
    spec: PodmanSecretSpec
    secret_data: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PodmanSecret":
        """Build from ``podman secret inspect`` JSON."""
        spec = _require(data, "Spec")
        driver = _require(spec, "Driver")
        return cls(
            id=_require(data, "ID"),
            created_at=parse_timestamp(_require(data, "CreatedAt")),
            updated_at=parse_timestamp(_require(data, "UpdatedAt")),
            spec=PodmanSecretSpec(
                name=_require(spec, "Name"),
                driver=PodmanSecretDriver(
                    name=_require(driver, "Name"),
                    options=dict(_require(driver, "Options") or {}),
                ),
                labels=dict(_require(spec, "Labels") or {}),
            ),
            secret_data=_require(data, "SecretData"),
        )


@dataclass
class PodmanContainerInfo:
    id: str
    names: str
    status: str
    restart_count: int | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PodmanContainerInfo":
        return cls(
            id=_require(data, "Id"),
            names=_require(data, "Names"),
            status=_require(data, "Status"),
            restart_count=data.get("RestartCount"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "Id": self.id,
            "Names": self.names,
            "Status": self.status,
            "RestartCount": self.restart_count,
        }


@dataclass
class PodmanPodInfo:
    id: str
    name: str
    status: PodmanPodStatus
    created: datetime
    labels: dict[str, str] = field(default_factory=dict)
    containers: list[PodmanContainerInfo] | None = None

    def _label(self, key: str) -> str:
        return self.labels.get(key, "")

    def label_name(self) -> str:
        return self._label("skate.io/name")

    def namespace(self) -> str:
        return self._label("skate.io/namespace")

    def deployment(self) -> str:
        return self._label("skate.io/deployment")

    def daemonset(self) -> str:
        return self._label("skate.io/daemonset")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PodmanPodInfo":
        """Build from podman pod JSON (PascalCase keys)."""
        containers = data.get("Containers")
        return cls(
            id=_require(data, "Id"),
            name=_require(data, "Name"),
            status=PodmanPodStatus(_require(data, "Status")),
            created=parse_timestamp(_require(data, "Created")),
            labels=dict(sorted(dict(_require(data, "Labels")).items())),
            containers=None
            if containers is None
            else [PodmanContainerInfo.from_dict(c) for c in containers],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "Id": self.id,
            "Name": self.name,
            "Status": self.status.value,
            "Created": self.created.isoformat(),
            "Labels": dict(sorted(self.labels.items())),
            "Containers": None
            if self.containers is None
            else [c.to_dict() for c in self.containers],
        }

    @classmethod
    def from_pod(cls, pod: Mapping[str, Any]) -> "PodmanPodInfo":
        """Build from a Kubernetes Pod object."""
        metadata = pod.get("metadata") or {}
        status = pod.get("status") or {}
        created = metadata.get("creationTimestamp")
        return cls(
            id=metadata.get("uid") or "",
            name=metadata.get("name") or "",
            status=PodmanPodStatus.from_pod_phase(status.get("phase") or ""),
            created=parse_timestamp(created) if created else datetime.now().astimezone(),
            labels=dict(metadata.get("labels") or {}),
            containers=None,
        )

    def to_pod(self) -> dict[str, Any]:
        """Render as a Kubernetes Pod object."""
        metadata: dict[str, Any] = {
            "creationTimestamp": _k8s_time(self.created),
            "name": self.name,
            "namespace": self.namespace(),
            "uid": self.id,
        }
        if self.labels:
            metadata["labels"] = {
                k: v
                for k, v in sorted(self.labels.items())
                if not k.startswith(NODESELECTOR_PREFIX)
            }
        node_selector = {
            k[len(NODESELECTOR_PREFIX):]: v
            for k, v in sorted(self.labels.items())
            if k.startswith(NODESELECTOR_PREFIX)
        }
        return {
            "apiVersion": "v1",
            "kind": "Pod",
            "metadata": metadata,
            "spec": {"containers": [], "nodeSelector": node_selector},
            "status": {"phase": self.status.to_pod_phase()},
        }