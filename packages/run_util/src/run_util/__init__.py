from run_util.command import CommandResult, CommandStatus
from run_util.run_util import OutputSink, RunUtil

__all__ = [
    "CommandResult",
    "CommandStatus",
    "OutputSink",
    "RunUtil",
]
