"""Node DNS, cordon and SSH helpers and cluster state for podman-based clusters."""

__version__ = "0.1.0"