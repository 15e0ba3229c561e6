from __future__ import annotations

import socket
from typing import Any


def local_computer_name() -> str:
    """Short (NetBIOS-style) name of this host."""
    return socket.gethostname().split(".", 1)[0]


def is_active_node(session: Any, local_name: str | None = None) -> bool:
    """True when this host currently owns the instance.

    A stand-alone instance is always "active". A failover cluster instance is
    active only on the node whose physical NetBIOS name matches ours.
    """
    if not getattr(session, "is_clustered", False):
        return True
    physical = getattr(session, "physical_name", None)
    if not physical:
        return False
    local_name = local_name or local_computer_name()
    return physical.strip().lower() == local_name.strip().lower()
