from datetime import datetime, timezone

import pytest

from skatenode.podman import (
    PodmanContainerInfo,
    PodmanPodInfo,
    PodmanPodStatus,
    PodmanSecret,
)


def _pod_info(**overrides):
    values = dict(
        id="abc",
        name="web.prod",
        status=PodmanPodStatus.RUNNING,
        created=datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc).astimezone(),
        labels={
            "skate.io/name": "web",
            "skate.io/namespace": "prod",
            "skate.io/deployment": "web",
        },
        containers=None,
    )
    values.update(overrides)
    return PodmanPodInfo(**values)


@pytest.mark.parametrize(
    "status, phase",
    [
        (PodmanPodStatus.RUNNING, "Running"),
        (PodmanPodStatus.STOPPED, "Succeeded"),
        (PodmanPodStatus.EXITED, "Succeeded"),
        (PodmanPodStatus.DEAD, "Failed"),
        (PodmanPodStatus.DEGRADED, "Running"),
        (PodmanPodStatus.CREATED, "Pending"),
        (PodmanPodStatus.ERROR, "Failed"),
    ],
)
def test_to_pod_phase(status, phase):
    assert status.to_pod_phase() == phase


@pytest.mark.parametrize(
    "phase, status",
    [
        ("Running", PodmanPodStatus.RUNNING),
        ("Succeeded", PodmanPodStatus.EXITED),
        ("Failed", PodmanPodStatus.DEAD),
        ("Pending", PodmanPodStatus.CREATED),
        ("", PodmanPodStatus.CREATED),
        ("Whatever", PodmanPodStatus.CREATED),
    ],
)
def test_from_pod_phase(phase, status):
    assert PodmanPodStatus.from_pod_phase(phase) is status


def test_phase_round_trip_is_stable_after_one_step():
    for status in PodmanPodStatus:
        once = PodmanPodStatus.from_pod_phase(status.to_pod_phase())
        assert PodmanPodStatus.from_pod_phase(once.to_pod_phase()) is once


def test_label_accessors():
    info = _pod_info()
    assert info.label_name() == "web"
    assert info.namespace() == "prod"
    assert info.deployment() == "web"
    assert info.daemonset() == ""


def test_dict_round_trip():
    info = _pod_info(
        containers=[PodmanContainerInfo(id="c1", names="web-c1", status="running", restart_count=2)]
    )
    assert PodmanPodInfo.from_dict(info.to_dict()) == info


def test_from_dict_rejects_unknown_status():
    data = _pod_info().to_dict()
    data["Status"] = "Bogus"
    with pytest.raises(ValueError):
        PodmanPodInfo.from_dict(data)


def test_from_dict_requires_labels():
    data = _pod_info().to_dict()
    del data["Labels"]
    with pytest.raises(ValueError):
        PodmanPodInfo.from_dict(data)


def test_from_dict_nanosecond_timestamp():
    data = _pod_info().to_dict()
    data["Created"] = "2024-01-02T03:04:05.123456789Z"
    info = PodmanPodInfo.from_dict(data)
    expected = datetime(2024, 1, 2, 3, 4, 5, 123456, tzinfo=timezone.utc)
    assert info.created == expected


def test_container_info_round_trip():
    container = PodmanContainerInfo(id="c1", names="n", status="exited")
    assert PodmanContainerInfo.from_dict(container.to_dict()) == container


def test_to_pod_splits_node_selector_labels():
    info = _pod_info(labels={"skate.io/namespace": "prod", "nodeselector/zone": "a"})
    pod = info.to_pod()
    assert pod["metadata"]["labels"] == {"skate.io/namespace": "prod"}
    assert pod["spec"]["nodeSelector"] == {"zone": "a"}
    assert pod["metadata"]["namespace"] == "prod"
    assert pod["status"]["phase"] == "Running"


def test_to_pod_without_labels_omits_them():
    pod = _pod_info(labels={}).to_pod()
    assert "labels" not in pod["metadata"]
    assert pod["spec"]["nodeSelector"] == {}


def test_pod_round_trip():
    info = _pod_info()
    back = PodmanPodInfo.from_pod(info.to_pod())
    assert back.id == info.id
    assert back.name == info.name
    assert back.status is info.status
    assert back.created == info.created
    assert back.labels == info.labels


def test_from_pod_defaults():
    before = datetime.now().astimezone()
    info = PodmanPodInfo.from_pod({"metadata": {}})
    assert info.id == ""
    assert info.name == ""
    assert info.status is PodmanPodStatus.CREATED
    assert info.labels == {}
    assert info.created >= before


def test_secret_from_dict():
    data = {
        "ID": "s1",
        "CreatedAt": "2024-01-02T03:04:05.5Z",
        "UpdatedAt": "2024-01-02T03:04:06Z",
        "Spec": {
            "Name": "db",
            "Driver": {"Name": "file", "Options": {"path": "/tmp"}},
            "Labels": {"skate.io/namespace": "prod"},
        },
        "SecretData": "c2VjcmV0",
    }
    secret = PodmanSecret.from_dict(data)
    assert secret.id == "s1"
    assert secret.spec.name == "db"
    assert secret.spec.driver.options == {"path": "/tmp"}
    assert secret.spec.labels == {"skate.io/namespace": "prod"}
    assert secret.updated_at > secret.created_at


def test_secret_from_dict_missing_field():
    with pytest.raises(ValueError):
        PodmanSecret.from_dict({"ID": "s1"})