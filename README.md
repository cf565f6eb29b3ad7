# skatenode

Node-side helpers and cluster-state tracking for small clusters of hosts that
run their workloads as podman pods.

## Modules

- `skatenode.util` – `slugify`, `hash_string`, `NamespacedName` (with
  `NamespacedName.parse("name.namespace")`), `metadata_name`, `age`,
  `lock_file`, `spawn_orphan_process`, `transfer_file_cmd`, `is_ip`, `is_cidr`,
  and the shell executor abstraction `ShellExec` with its local implementation
  `SubprocessExec`.
- `skatenode.podman` – `PodmanPodInfo`, `PodmanContainerInfo`, `PodmanSecret`
  and `PodmanPodStatus`, read from podman's JSON and converted to and from
  Kubernetes-style Pod documents (`from_pod`, `to_pod`).
- `skatenode.dns_service` – `DnsService`, which keeps an `addnhosts` file of pod
  DNS entries: `add` writes a disabled entry for a deployment or daemonset pod,
  `wait_and_enable_healthy` enables it once the pod's containers are healthy,
  `remove` drops entries and returns their IPs, `add_misc_host` adds an
  arbitrary host, and `reload` sends HUP to the coredns container.
- `skatenode.cordon` – `cordon`, `uncordon` and `is_cordoned`, which manage a
  `CORDON` marker file under a directory (default `/var/lib/skate`).
- `skatenode.ssh` – `RealSsh` connects to a `Node` with paramiko and runs
  commands (`execute`, `execute_noisy`, `execute_stdout`), applies and removes
  manifests on the node, and collects `HostInfo` with `get_node_system_info`.
  `SshClients` runs the same work on several nodes in parallel.
- `skatenode.state` – `NodeState`, `NodeStatus` and `ReconciledResult`: node
  health, schedulability, pods, and a Kubernetes-style Node view
  (`to_k8s_node`).
- `skatenode.cluster_state` – `ClusterState`, which caches node states as JSON,
  reconciles them against configured node names and reported `HostInfo`, and
  locates pods across nodes.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Examples

```python
from skatenode.util import NamespacedName, slugify

NamespacedName.parse("web.default")   # NamespacedName(name="web", namespace="default")
slugify("My Cluster")                 # "my-cluster"
```

```python
from skatenode.cluster_state import ClusterState

state = ClusterState.load("production", cache_dir="/tmp/skate-cache")
for pod, node in state.locate_pods("web", "default"):
    print(pod.name, node.node_name)
```

```python
from skatenode.dns_service import DnsService

dns = DnsService("/tmp/skate-dns")
dns.add_misc_host("10.0.0.5", "db.internal", "manual")
```

## What this package does not do

- It installs no command: there is no node agent executable, so the functions
  above are used from Python code.
- It does not sync service backends into a load balancer configuration, nor
  track terminated service addresses.
- It does not read a cluster configuration file; `ClusterState.reconcile_all_nodes`
  takes the configured node names as an argument.