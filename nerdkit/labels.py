"""Labels set on containers; also passed to OCI containers as annotations."""

PREFIX = "nerdctl/"

# The containerd namespace such as "default", "k8s.io".
NAMESPACE = PREFIX + "namespace"

# A human-friendly name. Several containers may carry the same name label.
NAME = PREFIX + "name"

HOSTNAME = PREFIX + "hostname"

# "/var/lib/nerdctl/<ADDRHASH>/containers/<NAMESPACE>/<ID>"
STATE_DIR = PREFIX + "state-dir"

# JSON list of network names; currently of length 1.
NETWORKS = PREFIX + "networks"

# JSON list of port mappings.
PORTS = PREFIX + "ports"

LOG_URI = PREFIX + "log-uri"

# JSON list of anonymous volume names.
ANONYMOUS_VOLUMES = PREFIX + "anonymous-volumes"