# patchwork/cli/commands: Command modules for the patchwork CLI.
#
# Each module in this package provides one or more CLI commands.

from .pause import pause, resume
from .plan import plan
from .run import run
from .status import status

__all__ = [
    # plan.py
    "plan",
    # run.py
    "run",
    # pause.py
    "pause",
    "resume",
    # status.py
    "status",
]
