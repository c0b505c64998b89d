"""Remote task backends."""

from patchwork.backends.agent_session import AgentSessionClient
from patchwork.backends.base import RemoteTaskClient
from patchwork.backends.status import TERMINAL_STATUSES, is_terminal, map_status

__all__ = [
    "AgentSessionClient",
    "RemoteTaskClient",
    "TERMINAL_STATUSES",
    "is_terminal",
    "map_status",
]
