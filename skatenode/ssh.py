"""SSH access to cluster nodes: host discovery, resource apply/remove and commands."""

from __future__ import annotations

import base64
import binascii
import codecs
import json
import os
import sys
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Iterable, Mapping, Sequence, TypeVar

import paramiko
from termcolor import colored

DEFAULT_SSH_PORT = 22
CONNECT_TIMEOUT = 5.0

T = TypeVar("T")

SYSTEM_INFO_SCRIPT = r"""
hostname > /tmp/hostname-$$ &
arch > /tmp/arch-$$ &
uname -s > /tmp/os-$$ &
{ { cat /etc/issue |head -1|awk '{print $1}'; }  || echo '' ; } > /tmp/distro-$$ &
skatelet -V|awk '{print $NF}' > /tmp/skatelet-$$ &
podman --version|awk '{print $NF}' > /tmp/podman-$$ &
sudo skatelet system info|base64 -w0 > /tmp/sys-$$ &
ovs-vsctl --version|head -1| awk '{print $NF}' > /tmp/ovs-$$ &

wait;

echo hostname="$(cat /tmp/hostname-$$)";
echo arch="$(cat /tmp/arch-$$)";
echo os="$(cat /tmp/os-$$)";
echo distro="$(cat /tmp/distro-$$)";
echo skatelet="$(cat /tmp/skatelet-$$)";
echo podman="$(cat /tmp/podman-$$)";
echo sys="$(cat /tmp/sys-$$)";
echo ovs="$(cat /tmp/ovs-$$)";
"""


class CommandError(RuntimeError):
    """A remote command failed or returned a non-zero exit status."""


@dataclass
class Platform:
    arch: str = ""
    distribution: str = ""


@dataclass
class HostInfo:
    node_name: str = ""
    hostname: str = ""
    platform: Platform = field(default_factory=Platform)
    skatelet_version: str | None = None
    system_info: dict[str, Any] | None = None
    podman_version: str | None = None
    ovs_version: str | None = None

    def healthy(self) -> list[str]:
        """Problems found with the host; an empty list means healthy."""
        problems: list[str] = []
        if self.skatelet_version is None:
            problems.append("Failed to find skatelet version")
        if self.system_info is not None and self.system_info.get("cordoned", False):
            problems.append("Node is cordoned")
        return problems

    def to_dict(self) -> dict[str, Any]:
        return {
            "node_name": self.node_name,
            "hostname": self.hostname,
            "platform": {
                "arch": self.platform.arch,
                "distribution": self.platform.distribution,
            },
            "skatelet_version": self.skatelet_version,
            "system_info": self.system_info,
            "podman_version": self.podman_version,
            "ovs_version": self.ovs_version,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "HostInfo":
        platform = data.get("platform") or {}
        system_info = data.get("system_info")
        return cls(
            node_name=data.get("node_name", ""),
            hostname=data.get("hostname", ""),
            platform=Platform(
                arch=platform.get("arch", ""),
                distribution=platform.get("distribution", ""),
            ),
            skatelet_version=data.get("skatelet_version"),
            system_info=dict(system_info) if system_info is not None else None,
            podman_version=data.get("podman_version"),
            ovs_version=data.get("ovs_version"),
        )


@dataclass(frozen=True)
class Node:
    name: str
    host: str
    peer_host: str = ""
    subnet_cidr: str = ""
    port: int | None = None
    user: str | None = None
    key: str | None = None

    def with_cluster_defaults(self, default_user: str | None, default_key: str | None) -> "Node":
        """Fill in the port, user and key the node leaves unset."""
        return replace(
            self,
            port=self.port if self.port is not None else DEFAULT_SSH_PORT,
            user=self.user if self.user is not None else default_user,
            key=self.key if self.key is not None else default_key,
        )


@dataclass(frozen=True)
class CommandResult:
    stdout: str
    stderr: str
    exit_status: int


class SshError(Exception):
    """Connecting to a node failed."""

    def __init__(self, node_name: str, error: str) -> None:
        super().__init__(f"{node_name}: {error}")
        self.node_name = node_name
        self.error = error


class SshErrors(Exception):
    """Several node connections failed."""

    def __init__(self, errors: Sequence[SshError]) -> None:
        self.errors = list(errors)
        super().__init__("\n".join(str(e) for e in self.errors))


def _optional(value: str) -> str | None:
    return value if value else None


def parse_host_info(node_name: str, stdout: str) -> HostInfo:
    """Build a HostInfo from the ``key=value`` lines the discovery script prints."""
    info = HostInfo(node_name=node_name)
    arch: str | None = None
    for line in stdout.split("\n"):
        key, sep, value = line.partition("=")
        if not sep:
            continue
        if key == "hostname":
            info.hostname = value
        elif key == "arch":
            arch = value
        elif key == "distro":
            info.platform.distribution = value
        elif key == "skatelet":
            info.skatelet_version = _optional(value.removeprefix("v") if value else value)
        elif key == "podman":
            info.podman_version = _optional(value)
        elif key == "ovs":
            info.ovs_version = _optional(value)
        elif key == "sys" and value:
            try:
                decoded = json.loads(base64.b64decode(value, validate=True))
            except (binascii.Error, ValueError):
                continue
            if decoded is None or isinstance(decoded, dict):
                info.system_info = decoded

    if arch is not None:
        info.platform.arch = arch
        if info.system_info is not None:
            platform = info.system_info.setdefault("platform", {})
            platform["arch"] = arch

    if info.skatelet_version is not None and info.system_info is None:
        raise CommandError(
            f"skatelet installed ({info.skatelet_version}) but failed to return system info"
        )
    return info


def _b64(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def _resource_type_name(resource_type: Any) -> str:
    name = resource_type.value if isinstance(resource_type, Enum) else resource_type
    return str(name).lower()


class RealSsh:
    """A connection to one node over SSH."""

    def __init__(self, node_name: str, client: Any) -> None:
        self.node_name = node_name
        self.client = client

    def __repr__(self) -> str:
        return f"RealSsh(node_name={self.node_name!r})"

    @classmethod
    def connect(cls, node: Node) -> "RealSsh":
        """Open an SSH connection to ``node``, raising SshError on failure."""
        key = os.path.expanduser(node.key or "")
        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                node.host,
                port=node.port if node.port is not None else DEFAULT_SSH_PORT,
                username=node.user or "",
                key_filename=key or None,
                timeout=CONNECT_TIMEOUT,
                banner_timeout=CONNECT_TIMEOUT,
                auth_timeout=CONNECT_TIMEOUT,
            )
        except Exception as exc:
            client.close()
            raise SshError(node.name, str(exc) or "timeout") from exc
        return cls(node.name, client)

    def run(self, cmd: str) -> CommandResult:
        """Run ``cmd`` and collect its output and exit status."""
        _stdin, stdout, stderr = self.client.exec_command(cmd)
        out = stdout.read().decode("utf-8", errors="replace")
        err = stderr.read().decode("utf-8", errors="replace")
        status = stdout.channel.recv_exit_status()
        return CommandResult(out, err, status)

    def execute(self, cmd: str) -> str:
        """Run ``cmd`` and return its stdout; raise CommandError on failure."""
        try:
            result = self.run(cmd)
        except (paramiko.SSHException, OSError) as exc:
            raise CommandError(f"{cmd} failed: {exc}") from exc
        if result.exit_status > 0:
            raise CommandError(f"{cmd} failed: {result.stderr}")
        return result.stdout

    def _echo_command(self, cmd: str) -> None:
        for line in cmd.splitlines():
            print(f"{self.node_name} | > {colored(line, 'green')}")

    def execute_noisy(self, cmd: str) -> str:
        """Print the command, then execute it."""
        self._echo_command(cmd)
        return self.execute(cmd)

    def _print_chunk(self, text: str, prefix_output: bool, prev_last_char: str) -> str:
        if prefix_output and prev_last_char == "\n":
            print(f"{self.node_name} | {text}", end="")
        else:
            print(text, end="")
        sys.stdout.flush()
        return text[-1] if text else prev_last_char

    def execute_stdout(self, cmd: str, print_command: bool = False, prefix_output: bool = False) -> None:
        """Run ``cmd``, streaming its stdout and stderr to our stdout."""
        if print_command:
            self._echo_command(cmd)
        channel = self.client.get_transport().open_session()
        channel.set_combined_stderr(True)
        channel.exec_command(cmd)
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        last_char = "\n"
        while data := channel.recv(4096):
            last_char = self._print_chunk(decoder.decode(data), prefix_output, last_char)
        tail = decoder.decode(b"", final=True)
        if tail:
            self._print_chunk(tail, prefix_output, last_char)
        status = channel.recv_exit_status()
        if status not in (-1, 0):
            raise CommandError(f"exit status {status}")

    def get_node_system_info(self) -> HostInfo:
        """Discover the node's platform, tool versions and skatelet system info."""
        result = self.run(SYSTEM_INFO_SCRIPT)
        if result.exit_status > 0:
            raise CommandError("\n".join(result.stderr.splitlines()))
        return parse_host_info(self.node_name, result.stdout)

    def apply_resource(self, manifest: str) -> tuple[str, str]:
        """Apply a manifest on the node; return trimmed stdout and stderr."""
        result = self.run(f"echo '{_b64(manifest)}'| base64 --decode|sudo skatelet apply -")
        if result.exit_status == 0:
            return result.stdout.strip(), result.stderr.strip()
        message = result.stderr.strip() if result.stderr else result.stdout.strip()
        raise CommandError(
            f"failed to apply resource: exit code {result.exit_status}, {message}"
        )

    def remove_resource(self, resource_type: Any, name: str, namespace: str) -> tuple[str, str]:
        """Delete a named resource of the given type on the node."""
        kind = _resource_type_name(resource_type)
        result = self.run(f"sudo skatelet delete {kind} --name {name} --namespace {namespace}")
        if result.exit_status == 0:
            return result.stdout, result.stderr
        message = result.stderr if result.stderr else result.stdout
        raise CommandError(
            f"{self.node_name} - failed to remove resource: "
            f"exit code {result.exit_status}, {message.strip()}"
        )

    def remove_resource_by_manifest(self, manifest: str) -> tuple[str, str]:
        """Delete the resource a manifest describes on the node."""
        result = self.run(f"echo '{_b64(manifest)}' |base64  --decode|sudo skatelet delete -")
        if result.exit_status == 0:
            return result.stdout, result.stderr
        message = result.stderr if result.stderr else result.stdout
        raise CommandError(
            f"failed to remove resource: exit code {result.exit_status}, {message}"
        )


def _gather(clients: Sequence[Any], work: Callable[[Any], T]) -> list[T | Exception]:
    def capture(client: Any) -> T | Exception:
        try:
            return work(client)
        except Exception as exc:
            return exc

    if not clients:
        return []
    with ThreadPoolExecutor(max_workers=len(clients)) as pool:
        return list(pool.map(capture, clients))


class SshClients:
    """Connections to several nodes, used together."""

    def __init__(self, clients: Iterable[Any]) -> None:
        self.clients = list(clients)

    def find(self, node_name: str) -> Any | None:
        return next((c for c in self.clients if c.node_name == node_name), None)

    def execute(self, command: str) -> list[tuple[str, str | Exception]]:
        """Run ``command`` on every node; pair each node name with output or error."""
        results = _gather(self.clients, lambda c: c.execute(command))
        return [(c.node_name, r) for c, r in zip(self.clients, results)]

    def execute_noisy(self, command: str, args: Sequence[str]) -> list[tuple[str, str | Exception]]:
        """Print and run ``command`` with ``args`` on every node."""
        full = f"{command} {' '.join(args)}"
        results = _gather(self.clients, lambda c: c.execute_noisy(full))
        return [(c.node_name, r) for c, r in zip(self.clients, results)]

    def get_nodes_system_info(self) -> list[HostInfo | Exception]:
        return _gather(self.clients, lambda c: c.get_node_system_info())