import pytest

from nodeprov.kube import (
    Container,
    InMemoryClient,
    Node,
    NotFoundError,
    OwnerReference,
    Pod,
    PodCondition,
    Provisioner,
    failed_to_schedule,
    is_owned_by_daemonset,
    is_owned_by_node,
    pod_scheduling_index,
    requests_for_pods,
)


def test_pod_scheduling_index_returns_node_name():
    pod = Pod(node_name="node-a")
    assert pod_scheduling_index(pod) == ["node-a"]


def test_pod_scheduling_index_ignores_non_pods():
    assert pod_scheduling_index(Node(name="node-a")) == []


def test_limits_fill_missing_requests():
    container = Container(requests={"cpu": 2}, limits={"cpu": 4, "nvidia.com/gpu": 1})
    assert container.requests["cpu"] == 2
    assert container.requests["nvidia.com/gpu"] == 1


def test_requests_for_pods_is_additive():
    first = Pod(containers=[Container(requests={"cpu": 1, "memory": 1024})])
    second = Pod(containers=[Container(requests={"cpu": 2}), Container(requests={"memory": 2048})])
    combined = requests_for_pods(first, second)
    assert combined["cpu"] == requests_for_pods(first)["cpu"] + requests_for_pods(second)["cpu"]
    assert combined["memory"] == requests_for_pods(first)["memory"] + requests_for_pods(second)["memory"]
    assert requests_for_pods() == {}


def test_failed_to_schedule():
    pending = Pod(conditions=[PodCondition(type="PodScheduled", status="False", reason="Unschedulable")])
    plain = Pod()
    other_reason = Pod(conditions=[PodCondition(type="PodScheduled", status="False", reason="Other")])
    assert failed_to_schedule(pending) is True
    assert failed_to_schedule(plain) is False
    assert failed_to_schedule(other_reason) is False


def test_ownership():
    daemon = Pod(owner_references=[OwnerReference(api_version="apps/v1", kind="DaemonSet", name="ds")])
    static = Pod(owner_references=[OwnerReference(api_version="v1", kind="Node", name="n")])
    assert is_owned_by_daemonset(daemon) and not is_owned_by_node(daemon)
    assert is_owned_by_node(static) and not is_owned_by_daemonset(static)


def test_get_missing_objects_raise_not_found():
    client = InMemoryClient()
    with pytest.raises(NotFoundError):
        client.get_provisioner("missing")
    with pytest.raises(NotFoundError):
        client.get_node("missing")


def test_create_and_get_round_trip():
    client = InMemoryClient()
    provisioner = client.create(Provisioner(name="default"))
    node = client.create(Node(name="node-a"))
    assert client.get_provisioner("default") is provisioner
    assert client.get_node("node-a") is node


def test_create_duplicate_and_unknown_type():
    client = InMemoryClient()
    client.create(Node(name="node-a"))
    with pytest.raises(ValueError):
        client.create(Node(name="node-a"))
    with pytest.raises(TypeError):
        client.create("not an object")


def test_list_pods_by_node_name_field():
    client = InMemoryClient()
    pending = client.create(Pod())
    bound = client.create(Pod(node_name="node-a"))
    assert client.list_pods(matching_fields={"spec.nodeName": ""}) == [pending]
    assert client.list_pods(matching_fields={"spec.nodeName": "node-a"}) == [bound]


def test_list_pods_unknown_field_raises():
    client = InMemoryClient()
    with pytest.raises(ValueError):
        client.list_pods(matching_fields={"spec.unknown": "x"})


def test_custom_index_field():
    client = InMemoryClient()
    client.index_field("status.phase", lambda obj: [obj.phase])
    running = client.create(Pod(phase="Running"))
    client.create(Pod())
    assert client.list_pods(matching_fields={"status.phase": "Running"}) == [running]


def test_list_pods_by_namespace_and_labels():
    client = InMemoryClient()
    match = client.create(Pod(namespace="team", labels={"app": "web", "tier": "a"}))
    client.create(Pod(namespace="other", labels={"app": "web"}))
    client.create(Pod(namespace="team", labels={"app": "db"}))
    assert client.list_pods(namespace="team", matching_labels={"app": "web"}) == [match]
    assert len(client.list_pods()) == 3


def test_list_nodes_by_labels():
    client = InMemoryClient()
    zoned = client.create(Node(labels={"zone": "z1", "arch": "amd64"}))
    client.create(Node(labels={"zone": "z2"}))
    assert client.list_nodes({"zone": "z1"}) == [zoned]
    assert len(client.list_nodes()) == 2