# nerdkit

A library of the pieces a containerd-style container command line is built
from: on-disk stores for container names, volumes and `/etc/hosts` files,
CNI network configuration lists, Docker-compatible `json-file` logs and
`inspect`/`info` objects, `-v` flag parsing, and a compose file loader that
turns each service into the exact argument list for a container CLI's `run`
and `build` commands.

Linux is the target platform; the stores take an exclusive `flock(2)` on
their directories (`nerdkit.lockutil.dir_lock`) so that several processes can
share one data root safely.

## Identifiers

`nerdkit.ids.generate_id()` returns 64 random lower-case hex digits.
`validate_identifier(name)` raises `InvalidIdentifierError` (a `ValueError`)
unless the name is 1 to 76 characters of alphanumeric runs separated by
single `.`, `_` or `-`.

## Stores

```python
from nerdkit.ids import generate_id
from nerdkit.namestore import NameStore
from nerdkit.volumestore import VolumeStore

names = NameStore("/var/lib/nerdkit", "default")
cid = generate_id()
names.acquire("web", cid)        # raises NameInUseError if taken
names.release("web", cid)

volumes = VolumeStore("/var/lib/nerdkit", "default")
vol = volumes.create("db_data")  # FileExistsError if it exists
print(vol.mountpoint)            # .../volumes/default/db_data/_data
print(volumes.get("db_data"))    # VolumeNotFoundError if missing
print(volumes.list_volumes())    # {name: Volume}, in name order
volumes.remove(["db_data"])
```

`nerdkit.hostsstore.HostsStore` keeps one `hosts` file per container and
rewrites all of them whenever a container is acquired or released, so
containers on a shared network reach each other by hostname and name:

```python
from nerdkit.hostsstore import HostsStore, Meta, CNIResult, InterfaceConfig, IPConfig

store = HostsStore("/var/lib/nerdkit")
store.acquire(Meta(
    namespace="default",
    container_id=cid,
    networks={"n1": CNIResult(interfaces={"eth0": InterfaceConfig(ip_configs=[IPConfig(ip="10.4.2.2")])})},
    hostname="bar",
    name="foo",
))
store.release("default", cid)    # keeps the hosts file for restarts
```

`alloc_hosts_file` and `dealloc_hosts_file` create and remove a container's
bind-mountable hosts file; `create_line` builds a single entry such as
`"10.4.2.2\tbar bar.n1 foo foo.n1\n"`. Entries for the default `bridge`
network get no `.bridge` suffix.

## Networks

```python
from nerdkit.netutil import CNIEnv, config_lists, acquire_next_id, generate_config_list

env = CNIEnv(path="/opt/cni/bin", netconf_path="/etc/cni/net.d")
existing = config_lists(env)     # default "bridge" (10.4.0.0/24) first
next_id = acquire_next_id(existing)
conf = generate_config_list(env, next_id, "mynet", "10.4.1.0/24")
print(conf.raw.decode())
```

The CNI plugins `bridge`, `portmap`, `firewall` and `tuning` must be
executable in the CNI path, or `FileNotFoundError` is raised; `isolation` is
added to the list when it is installed. The gateway is the first address of
the subnet. `NetworkConfigList.to_native()` gives the inspectable `Network`.

## DNS and mounts

`nerdkit.dnsutil.write_resolv_conf(path, dns)` writes `search localdomain`
and one `nameserver` line per address, raising `ValueError` for anything that
is not an IP address.

`nerdkit.mountutil.process_flag_v(spec, vol_store)` turns `dst`, `src:dst` or
`src:dst:ro` into a `Processed` holding an rbind `Mount`. A lone destination
creates an anonymous volume in the given `VolumeStore`; a source without `/`
is looked up as a volume name. Inside a user namespace the locked mount flags
of the source filesystem are added to the options.

## Logs

`nerdkit.jsonfile.encode(writer, stdout, stderr)` reads both streams
concurrently and writes each complete line as a Docker-compatible JSON
`Entry`; `decode(stdout, stderr, reader)` splits such a file back into two
streams. `log_path(data_store, namespace, container_id)` gives the file's
location, `<data>/containers/<ns>/<id>/<id>-json.log`.

## Inspect objects

`nerdkit.dockercompat.container_from_native(NativeContainer(...))` builds a
`docker container inspect`-style `Container`; `Container.to_dict()` and
`Info.to_dict()` give Docker's key names, ready for `json.dumps`. Stopped
tasks are reported as `"exited"`, and published ports are read from the
`nerdctl/ports` annotation (the label names are in `nerdkit.labels`).

## Compose files

```python
from nerdkit.projectloader import load
from nerdkit.serviceparser import parse

project = load("/srv/app/compose.yaml", "app")
for svc in project.services_in_dependency_order():
    parsed = parse(project, svc)
    print(parsed.image, parsed.pull_mode)
    if parsed.build:
        print("build", *parsed.build.build_args)
    for container in parsed.containers:
        print("run", *container.run_args)
```

`load` reads the YAML, interpolates `${VAR}` references from the environment
and names networks and volumes `<project>_<key>`. `parse` handles replicas,
CPU and memory limits, restart policies, one network per service, ports,
volumes, secrets and configs, raising `ValueError` for settings it cannot
honour; unsupported fields are logged as warnings through the `logging`
module and otherwise ignored.

## What it does not do

nerdkit has no command-line program and starts no processes. It produces the
argument lists for a container CLI but does not run them: there is no
`up`/`down`/`build` driver for compose projects, no streaming or tagging of
container logs to a terminal, and no gathering of host or daemon information
(kernel version, distribution name) to fill an `Info` object. Talking to a
container runtime, pulling images and setting up networks is left to the
caller.