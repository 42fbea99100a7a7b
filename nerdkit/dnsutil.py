"""resolv.conf generation."""

import ipaddress
import os
from typing import Iterable


def write_resolv_conf(path: str, dns: Iterable[str]) -> None:
    """Write a resolv.conf at *path* naming each address in *dns*.

    Raises ValueError if any entry is not an IP address; nothing is written then.
    """
    lines = ["search localdomain\n"]
    for entry in dns:
        try:
            ipaddress.ip_address(entry)
        except ValueError:
            raise ValueError(f"invalid dns {entry!r}") from None
        lines.append(f"nameserver {entry}\n")
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o644)
    with os.fdopen(fd, "w") as f:
        f.write("".join(lines))