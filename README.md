# shipyard

Building blocks for a small self-hosted deployment platform. The package has no runtime dependencies.

## What is in it

- **A key-value backend.** `shipyard.kv.MemoryKV` is a thread-safe, in-process key-value store.
  - `grant(ttl)` creates a lease. Keys written on a lease disappear once the lease has run out.
  - `watch(prefix)` returns a `WatchStream` of `WatchEvent`s (`EventType.PUT` / `EventType.DELETE`).
- **A JSON store.** `shipyard.store.Store` writes JSON values on top of such a client. It uses `MemoryKV()` when no client is given. The key layout is fixed:

  | Key | Holds |
  | --- | --- |
  | `/shipyard/services/{name}` | service records |
  | `/shipyard/stacks/{name}/state` | stack lifecycle state |
  | `/shipyard/stacks/{name}/ledger/{ts}` | version history, `ts` in Unix nanoseconds, zero-padded to 20 digits |
  | `/shipyard/nodes/{id}` | node records, written on a 30 second lease |

  Backend failures and undecodable values raise `shipyard.store.StoreError`.
- **Typed stores.**
  - `shipyard.services.ServiceStore` holds `ServiceRecord`s.
  - `shipyard.stacks.StackStore` holds `StackState`s, lifecycle transitions (`StackLifecycle`) and a rollback ledger of `LedgerEntry`s.
  - `shipyard.nodes.NodeStore` holds `NodeInfo` registrations and live metrics.

  Lookups of missing records return `None`. Listings skip malformed records and log a warning.
- **Reconciliation.** `shipyard.reconciler.Watcher` calls your reconcile function in two cases:
  - whenever a stack state key is written;
  - on a periodic sweep, every 30 seconds by default.

  It skips destroyed stacks and ledger keys.
- **An event bus.** `shipyard.telemetry.Bus` publishes lifecycle `Event`s and container `MetricSample`s through a JetStream-style client that you supply. `subject_for_type` maps an event type to its subject, for example `"deploy"` to `"shipyard.events.deploy"`.
- **Built-in service templates.** `shipyard.templates` holds templates for PostgreSQL, MySQL, Redis, MongoDB, Prometheus, Grafana, MinIO, Nextcloud, Gitea, Traefik, NGINX and others.
- **noVNC sidecars.**
  - `shipyard.vnc.launcher.Launcher` starts a browser-viewable VNC proxy container next to a service container, through a Docker-style client that you supply.
  - `shipyard.vnc.session.Registry` tracks the running sidecars.

## Storing and reading records

```python
from shipyard.kv import MemoryKV
from shipyard.store import Store
from shipyard.services import ServiceRecord, ServiceStore
from shipyard.stacks import StackLifecycle, StackState, StackStore

store = Store(MemoryKV())

services = ServiceStore(store)
services.put(ServiceRecord(name="billing", engine="docker"))
assert services.exists("billing")

stacks = StackStore(store)
stacks.put_state(StackState(name="billing-prod", service_name="billing"))
stacks.transition_state("billing-prod", StackLifecycle.RUNNING, "")
print(stacks.get_state("billing-prod").state)   # StackLifecycle.RUNNING
```

`transition_state` raises `StoreError` when the stack does not exist.

`write_ledger_entry` sets an entry's `version` from its `recorded_at` time. `list_ledger_entries` returns the entries newest first.

## Reconciling stacks

```python
from shipyard.reconciler import Watcher

def reconcile(state):
    print("converging", state.name, state.state.value)

watcher = Watcher(stacks, reconcile, 30.0)
watcher.start()        # background threads; returns watcher.stop
# ...
watcher.stop()
```

`Watcher` is also a context manager that starts on entry and stops on exit.

- `sweep()` runs one full pass by hand and returns the stacks it attempted.
- `handle_event(event)` processes a single watch event.

An exception raised by the reconcile function is logged and does not stop the loops.

## Templates

```python
from shipyard import templates

for tpl in templates.search("sql"):
    print(tpl.id, tpl.name)

manifest = templates.get("postgres").build_manifest({"POSTGRES_DB": "app"})
```

The lookup functions work as follows:

- `all_templates()` returns every template.
- `get(id)` returns one template, or `None` if there is no such id.
- `by_category(Category.WEB)` filters by category.
- `search(query)` matches the name, description or category, ignoring case.

`build_manifest` returns a plain dict. Parameters you leave out take the template's defaults. Environment values that end up empty are dropped.

## VNC sessions

```python
from shipyard.vnc.launcher import sidecar_name
from shipyard.vnc.session import Registry

print(sidecar_name("My App", "dev"))   # shipyard_my_app_dev_vnc
sessions = Registry()
```

`Launcher(docker).launch(service_name, mode, network_name, main_container_name, vnc_port)` does the following:

- pulls `theasp/novnc:latest` if it is missing;
- removes any stale sidecar;
- starts a new sidecar on a free host port;
- returns an `Instance` whose `url` points at `http://localhost:<port>`.

Failures raise `LauncherError`. `Registry` is safe to use from several threads.

## What this package does not do

- **No network clients.** The package ships no etcd, NATS or Docker client.
  - `Store` works with `MemoryKV` or any object offering the same methods.
  - `Bus` and `Launcher` need a client object passed in. Their docstrings describe the methods it must provide.
- **No persistence.** `MemoryKV` holds everything in memory, so data is lost when the process ends.
- **No command-line tool, HTTP server or user interface.** The package is a library only.