# nodeprov

`nodeprov` holds the decision-making steps of a cluster node provisioner. It
picks out pods that could not be scheduled, batches bursts of pod events,
relaxes soft node-affinity preferences for pods that keep failing, spreads
pods across topology domains, packs them onto candidate instance types, and
keeps capacity counts in gauges.

Cluster state lives in an in-memory object store
(`nodeprov.kube.InMemoryClient`), and instance types are plain data
(`nodeprov.packable.InstanceType`), so each step runs and can be tested on its
own.

## Installation

From a checkout of the project:

```
pip install .
```

For the test suite:

```
pip install ".[test]"
pytest
```

## Modules

| Module | Purpose |
| --- | --- |
| `nodeprov.kube` | `Pod`, `Node`, `Provisioner`, `Container`, affinity and topology-spread models; `InMemoryClient` with field indexes and label matching; `NotFoundError`; helpers `failed_to_schedule`, `is_owned_by_daemonset`, `is_owned_by_node`, `requests_for_pods`, `pod_scheduling_index` |
| `nodeprov.batch` | `Batcher`: one batching window per key, closed after an idle period or a maximum period |
| `nodeprov.filter` | `Filter`: the pending pods a provisioner may act on; `FilterError` lists why a pod was left out |
| `nodeprov.preferences` | `Preferences`: removes one node-affinity term each time a pod is seen again |
| `nodeprov.topologygroup` | `TopologyGroup`: per-domain pod counts and the choice of the least loaded domain |
| `nodeprov.topology` | `Topology`: turns topology spread constraints into node selectors, by zone or by hostname |
| `nodeprov.packable` | `InstanceType`, `Offering`, `Schedule`, `Packable`, `PackResult`, `packables_for` |
| `nodeprov.packer` | `Packer` and `Packing`: first-fit-decreasing packing; `weight_of`, `sort_by_resources`, `euclidean` |
| `nodeprov.metrics_common` | `GaugeVec` and `publish_count` |
| `nodeprov.metrics_pods` | `publish_pod_counts` |
| `nodeprov.metrics_nodes` | `publish_node_counts`, `filter_ready_nodes`, `metric_labels_from` |
| `nodeprov.metrics_controller` | `MetricsController`: refreshes the gauges for one provisioner |

## Filtering pending pods

```python
from nodeprov.kube import InMemoryClient, Provisioner
from nodeprov.filter import Filter

client = InMemoryClient()
client.create(Provisioner(name="default"))
# ... create pods in client ...

for pod in Filter(client).get_provisionable_pods("default"):
    print(pod.namespace, pod.name)
```

A pod is provisionable when it has a `PodScheduled` condition with reason
`Unschedulable`, is not owned by a DaemonSet or a Node, has no pod affinity or
anti-affinity, uses only the `In` and `NotIn` operators and no `match_fields`
in its node affinity, spreads only over the hostname or zone topology keys,
and selects the provisioner by the `karpenter.sh/provisioner-name` node
selector (pods without that selector go to the `default` provisioner).
`Filter.is_provisionable` raises `FilterError` whose `errors` holds every
reason found.

## Batching

```python
from nodeprov.batch import Batcher

with Batcher(max_period=10.0, idle_period=1.0) as batcher:
    batcher.add("default")   # as pod events arrive; never blocks
    batcher.wait("default")  # blocks until the window for "default" closes
```

`start()` and `stop()` can also be called directly. `stop()` ends every open
window and releases all waiters.

## Relaxing preferences

`Preferences().relax(pods)` remembers each pod's affinity the first time it
sees the pod. On later calls it restores that affinity and removes one term:
first the heaviest preferred term, and once those are gone the first required
term, as long as more than one required term is left. A pod not seen for the
time-to-live (five minutes by default) starts over.

## Topology spread

`Topology(client).inject(pods, zones, domains_for)` groups pods by namespace
and equal spread constraint, and writes the chosen domain into each pod's
`node_selector`. For the zone key it registers the given zones and counts the
scheduled pods that match the constraint's label selector on nodes in each
zone. For the hostname key it makes up `ceil(len(pods) / max_skew)` new random
hostnames. `domains_for(pod, key)` may narrow the domains one pod can use, or
return None for no limit.

## Packing

```python
from nodeprov.packable import InstanceType, Offering, Schedule
from nodeprov.packer import Packer

instance_types = [
    InstanceType("small", offerings=[Offering("zone-1")], cpu=2, memory=4 * 10**9, pods=10),
]
schedule = Schedule(pods=pods)
for packing in Packer().pack(schedule, instance_types):
    print(packing.node_quantity, [it.name for it in packing.instance_type_options])
```

Pods are sorted largest first by CPU, then memory. Instance types are ruled
out when they are outside the schedule's zones, instance types,
architectures or capacity types (None allows any), when they carry
accelerators no pod requests, or when their overhead or the schedule's
daemons do not fit. Packings with the same instance-type options and
constraints are merged into one `Packing` with a larger `node_quantity`.
Options are sorted smallest first by `weight_of` and at most 20 are kept.
Pods that fit no instance type are logged and dropped.

## Metrics

`publish_pod_counts(provisioner, pods)` sets one gauge value for each phase:
failed, pending, running, succeeded and unknown, zero included.
`publish_node_counts` sets the total node count for a provisioner and ready
node counts for each zone, and for each zone with each architecture and with
each instance type; all counts are tried and failures are raised together.
`MetricsController(client, instance_types_for).reconcile(name)` does both for
a provisioner in the store and returns the seconds until the next refresh
(10.0), or None when the provisioner does not exist.

Gauges are plain `GaugeVec` objects; read them with `get(labels)` or
`samples()`.

## What it does not do

There is no controller loop, no cluster API connection and no cloud
provider: nothing here launches nodes, creates node objects or binds pods.
The caller builds each `Schedule` (its pods, daemons and allowed values) and
supplies the instance types. Gauges are kept in memory only; there is no
metrics endpoint.