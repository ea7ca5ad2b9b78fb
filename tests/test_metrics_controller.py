import uuid

import pytest

from nodeprov.kube import (
    LABEL_ARCH,
    LABEL_INSTANCE_TYPE,
    LABEL_TOPOLOGY_ZONE,
    PROVISIONER_NAME_LABEL_KEY,
    InMemoryClient,
    Node,
    NodeCondition,
    Pod,
    Provisioner,
)
from nodeprov.metrics_controller import REQUEUE_AFTER, MetricsController
from nodeprov.metrics_nodes import (
    NODE_COUNT_BY_PROVISIONER,
    READY_NODE_COUNT_BY_INSTANCETYPE_PROVISIONER_ZONE,
    READY_NODE_COUNT_BY_PROVISIONER_ZONE,
)
from nodeprov.metrics_pods import POD_COUNT_BY_PHASE_PROVISIONER
from nodeprov.packable import InstanceType, Offering


def _name():
    return f"prov-{uuid.uuid4().hex[:8]}"


def _instance_types(_provisioner):
    return [
        InstanceType(name="small", architecture="amd64", offerings=[Offering("zone-a"), Offering("zone-b")]),
        InstanceType(name="large", architecture="arm64", offerings=[Offering("zone-a")]),
    ]


def _node(provisioner, zone, instance_type="small", ready=True):
    return Node(
        labels={
            PROVISIONER_NAME_LABEL_KEY: provisioner,
            LABEL_TOPOLOGY_ZONE: zone,
            LABEL_INSTANCE_TYPE: instance_type,
            LABEL_ARCH: "amd64",
        },
        conditions=[NodeCondition(type="Ready", status="True" if ready else "False")],
    )


@pytest.fixture
def client():
    return InMemoryClient()


def test_reconcile_missing_provisioner_returns_none(client):
    name = _name()
    controller = MetricsController(client, _instance_types)
    assert controller.reconcile(name) is None
    with pytest.raises(KeyError):
        NODE_COUNT_BY_PROVISIONER.get({"provisioner": name})


def test_reconcile_publishes_counts_and_requeues(client):
    name = _name()
    client.create(Provisioner(name=name))
    ready_a = [client.create(_node(name, "zone-a")), client.create(_node(name, "zone-a", "large"))]
    unready_b = [client.create(_node(name, "zone-b", ready=False))]
    client.create(_node(_name(), "zone-a"))
    running = [client.create(Pod(node_name=ready_a[0].name, phase="Running")) for _ in range(2)]
    pending = [client.create(Pod(node_name=unready_b[0].name, phase="Pending"))]

    controller = MetricsController(client, _instance_types)
    assert controller.reconcile(name) == REQUEUE_AFTER

    assert NODE_COUNT_BY_PROVISIONER.get({"provisioner": name}) == len(ready_a + unready_b)
    assert READY_NODE_COUNT_BY_PROVISIONER_ZONE.get({"provisioner": name, "zone": "zone-a"}) == len(ready_a)
    assert READY_NODE_COUNT_BY_PROVISIONER_ZONE.get({"provisioner": name, "zone": "zone-b"}) == 0
    assert READY_NODE_COUNT_BY_INSTANCETYPE_PROVISIONER_ZONE.get(
        {"instancetype": "large", "provisioner": name, "zone": "zone-a"}
    ) == 1
    assert POD_COUNT_BY_PHASE_PROVISIONER.get({"phase": "running", "provisioner": name}) == len(running)
    assert POD_COUNT_BY_PHASE_PROVISIONER.get({"phase": "pending", "provisioner": name}) == len(pending)
    assert POD_COUNT_BY_PHASE_PROVISIONER.get({"phase": "failed", "provisioner": name}) == 0


def test_pods_for_provisioner_only_returns_pods_on_its_nodes(client):
    name = _name()
    provisioner = client.create(Provisioner(name=name))
    own = client.create(_node(name, "zone-a"))
    other = client.create(_node(_name(), "zone-a"))
    mine = [client.create(Pod(node_name=own.name)), client.create(Pod(node_name=own.name))]
    client.create(Pod(node_name=other.name))
    client.create(Pod())

    pods = MetricsController(client, _instance_types).pods_for_provisioner(provisioner)
    assert sorted(p.key for p in pods) == sorted(p.key for p in mine)


def test_update_pod_counts_without_nodes_publishes_zeros(client):
    name = _name()
    provisioner = client.create(Provisioner(name=name))
    MetricsController(client, _instance_types).update_pod_counts(provisioner)
    for phase in ("failed", "pending", "running", "succeeded", "unknown"):
        assert POD_COUNT_BY_PHASE_PROVISIONER.get({"phase": phase, "provisioner": name}) == 0


def test_instance_type_failure_raises_but_pod_counts_are_published(client):
    name = _name()
    client.create(Provisioner(name=name))
    node = client.create(_node(name, "zone-a"))
    client.create(Pod(node_name=node.name, phase="Succeeded"))

    def failing(_provisioner):
        raise ConnectionError("cloud unavailable")

    with pytest.raises(ConnectionError, match="cloud unavailable"):
        MetricsController(client, failing).reconcile(name)
    assert POD_COUNT_BY_PHASE_PROVISIONER.get({"phase": "succeeded", "provisioner": name}) == 1
    with pytest.raises(KeyError):
        NODE_COUNT_BY_PROVISIONER.get({"provisioner": name})


def test_update_node_counts_uses_zones_of_offerings(client):
    name = _name()
    provisioner = client.create(Provisioner(name=name))
    client.create(_node(name, "zone-b"))

    def only_zone_b(_provisioner):
        return [InstanceType(name="small", offerings=[Offering("zone-b")])]

    MetricsController(client, only_zone_b).update_node_counts(provisioner)
    assert READY_NODE_COUNT_BY_PROVISIONER_ZONE.get({"provisioner": name, "zone": "zone-b"}) == 1
    with pytest.raises(KeyError):
        READY_NODE_COUNT_BY_PROVISIONER_ZONE.get({"provisioner": name, "zone": "zone-a"})