"""Pod DNS entries kept in a dnsmasq-style additional hosts file."""

from __future__ import annotations

import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Callable, Iterable, TypeVar

from skatenode.util import ShellExec, SubprocessExec, lock_file, spawn_orphan_process

log = logging.getLogger(__name__)

DEFAULT_DNS_CONF_PATH = "/var/lib/skate/dns"
INSPECT_TIMEOUT = "0.2"
ADD_RETRIES = 10
HEALTH_CHECK_ATTEMPTS = 60

T = TypeVar("T")


class DnsError(RuntimeError):
    """A DNS entry could not be added, enabled, removed or reloaded."""


class _Retryable(Exception):
    def __init__(self, cause: Exception) -> None:
        super().__init__(str(cause))
        self.cause = cause


def _parse_json(output: str, what: str) -> Any:
    try:
        return json.loads(output)
    except ValueError as exc:
        raise DnsError(f"failed to parse {what} output: {exc}") from exc


def _lines(path: Path) -> Iterable[str]:
    with path.open("r", encoding="utf-8") as handle:
        for line in handle:
            yield line.rstrip("\n").removesuffix("\r")


class DnsService:
    """Adds, enables and removes host entries for skate pods."""

    def __init__(
        self,
        conf_path: str | Path = DEFAULT_DNS_CONF_PATH,
        execer: ShellExec | None = None,
        sleep: Callable[[float], None] = time.sleep,
        spawn: Callable[[str, Iterable[str]], None] = spawn_orphan_process,
    ) -> None:
        self.conf_path = Path(conf_path)
        self.execer = execer if execer is not None else SubprocessExec()
        self._sleep = sleep
        self._spawn = spawn

    @property
    def _addnhosts(self) -> Path:
        return self.conf_path / "addnhosts"

    @property
    def _new_addnhosts(self) -> Path:
        return self.conf_path / "addnhosts-new"

    def _lock(self, callback: Callable[[], T]) -> T:
        return lock_file(self.conf_path / "lock", callback)

    def _ensure_conf_dir(self) -> None:
        self.conf_path.mkdir(parents=True, exist_ok=True)

    def _retry(self, retries: int, attempt: Callable[[], T]) -> T:
        for _ in range(retries - 1):
            try:
                return attempt()
            except _Retryable as exc:
                log.warning("retrying due to %s", exc.cause)
            self._sleep(1)
        try:
            return attempt()
        except _Retryable as exc:
            raise exc.cause from None

    def _exec_retryable(self, command: str, args: list[str]) -> str:
        try:
            return self.execer.exec(command, args)
        except Exception as exc:
            raise _Retryable(exc) from exc

    def _append_line(self, line: str) -> None:
        def write() -> None:
            try:
                with self._addnhosts.open("a", encoding="utf-8") as handle:
                    handle.write(line + "\n")
            except OSError as exc:
                raise DnsError(f"failed to write host to file: {exc}") from exc

        self._lock(write)

    def _rewrite(self, transform: Callable[[str], str | None]) -> None:
        """Rewrite the hosts file line by line; ``None`` drops a line."""
        try:
            lines = list(_lines(self._addnhosts))
        except OSError:
            return
        with self._new_addnhosts.open("w", encoding="utf-8") as handle:
            for line in lines:
                replaced = transform(line)
                if replaced is not None:
                    handle.write(replaced + "\n")
        os.replace(self._new_addnhosts, self._addnhosts)

    def add_misc_host(self, ip: str, domain: str, tag: str) -> None:
        """Add an enabled entry for an arbitrary host."""
        self._ensure_conf_dir()
        log.info("add_misc_host dns add for %s %s # %s", domain, ip, tag)
        self._append_line(f"{ip} {domain} # {tag}")

    def add(self, container_id: str, supplied_ip: str | None = None) -> None:
        """Add a disabled entry for a deployment or daemonset pod's infra container."""
        self._ensure_conf_dir()
        log_tag = f"{container_id}::add"
        log.info("%s dns add for %s %s", log_tag, container_id, supplied_ip)

        def attempt() -> tuple[str | None, Any]:
            output = self._exec_retryable(
                "timeout", [INSPECT_TIMEOUT, "podman", "inspect", container_id]
            )
            container = _parse_json(output, "podman inspect")[0]
            is_infra = container["IsInfra"]
            if not isinstance(is_infra, bool):
                raise DnsError("IsInfra is not a boolean")
            if not is_infra:
                log.warning("%s not infra container", log_tag)
                raise DnsError("not infra container")
            ip = self.extract_skate_ip(container)
            pod = container.get("Pod")
            if not isinstance(pod, str):
                log.warning("%s no pod found", log_tag)
                raise DnsError("no pod found")
            output = self._exec_retryable(
                "timeout", [INSPECT_TIMEOUT, "podman", "pod", "inspect", pod]
            )
            return ip, _parse_json(output, "podman pod inspect")

        extracted_ip, pod_json = self._retry(ADD_RETRIES, attempt)

        ip = supplied_ip if supplied_ip is not None else extracted_ip
        if ip is None:
            log.warning("%s no ip supplied or found for network 'skate'", log_tag)
            return

        labels = pod_json["Labels"]
        namespace = labels.get("skate.io/namespace")
        if not isinstance(namespace, str):
            raise DnsError("missing skate.io/namespace label")

        if "skate.io/daemonset" in labels:
            parent = "daemonset"
        elif "skate.io/deployment" in labels:
            parent = "deployment"
        else:
            log.info("not a daemonset or deployment, skipping")
            return

        app = labels[f"skate.io/{parent}"]
        domain = f"{app}.{namespace}.pod.cluster.skate"
        self._append_line(f"#{ip} {domain} # {container_id}")
        self._spawn("skatelet", ["dns", "enable", container_id])

    @staticmethod
    def extract_skate_ip(container_json: Any) -> str | None:
        """The container's non-empty IP address on the 'skate' network, if any."""
        networks = container_json["NetworkSettings"]["Networks"]
        if not isinstance(networks, dict):
            raise DnsError("container has no networks")
        ip = (networks.get("skate") or {}).get("IPAddress")
        if isinstance(ip, str) and ip:
            return ip
        return None

    def wait_and_enable_healthy(self, container_id: str) -> None:
        """Wait for the pod's containers to be healthy, then enable its entry."""
        log_tag = f"{container_id}::enable"
        output = self.execer.exec(
            "timeout", [INSPECT_TIMEOUT, "podman", "inspect", container_id]
        )
        pod = _parse_json(output, "podman inspect")[0].get("Pod")
        if not isinstance(pod, str):
            log.warning("%s no pod found", log_tag)
            raise DnsError("no pod found")

        output = self.execer.exec(
            "timeout", [INSPECT_TIMEOUT, "podman", "pod", "inspect", pod]
        )
        containers = _parse_json(output, "podman pod inspect").get("Containers")
        if not isinstance(containers, list):
            raise DnsError("no containers found")
        args = [INSPECT_TIMEOUT, "podman", "inspect", *(c["Id"] for c in containers)]

        healthy = False
        for _ in range(HEALTH_CHECK_ATTEMPTS):
            inspected = _parse_json(self.execer.exec("timeout", args), "podman inspect")
            if not isinstance(inspected, list):
                raise DnsError("no containers found")
            statuses = [c["State"]["Health"]["Status"] for c in inspected]
            if "unhealthy" in statuses:
                log.debug("%s at least one container unhealthy", log_tag)
                return
            if all(s in ("healthy", "") for s in statuses):
                healthy = True
                break
            self._sleep(1)

        if not healthy:
            log.warning("%s timed out waiting for all containers to be healthy", log_tag)
            return

        def enable(line: str) -> str:
            if line.endswith(container_id):
                return line.strip().lstrip("#")
            return line

        self._lock(lambda: self._rewrite(enable))

    def remove(self, container_id: str | None = None, pod_id: str | None = None) -> list[str]:
        """Drop entries for a container or pod; print and return their IPs."""
        if container_id is not None:
            tag = container_id
        elif pod_id is not None:
            output = self.execer.exec("podman", ["pod", "inspect", pod_id])
            infra = _parse_json(output, "podman inspect").get("InfraContainerID")
            if not isinstance(infra, str):
                raise DnsError("no infra container found")
            tag = infra
        else:
            raise DnsError("no container or pod id supplied")

        log.info("%s::remove removing dns entry for %s", tag, tag)
        self._ensure_conf_dir()
        removed: list[str] = []

        def drop(line: str) -> str | None:
            if not line.endswith(tag):
                return line
            ip = line.split()[0]
            print(ip)
            removed.append(ip)
            return None

        self._lock(lambda: self._rewrite(drop))
        return removed

    def reload(self) -> None:
        """Send HUP to the coredns container."""
        container = self.execer.exec(
            "podman",
            [
                "ps",
                "--filter",
                "label=skate.io/namespace=skate",
                "--filter",
                "label=skate.io/daemonset=coredns",
                "-q",
            ],
        )
        if not container:
            raise DnsError("no coredns container found")
        self.execer.exec("podman", ["kill", "--signal", "HUP", container])