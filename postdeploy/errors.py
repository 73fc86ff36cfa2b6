"""
Error taxonomy for post-deployment operations.

Transport failures are not wrapped here: httpx exceptions propagate to the
caller unchanged. Liveness marker failures never leave the marker module.
"""

from typing import Optional


class PostDeploymentError(Exception):
    """Base class for errors raised by postdeploy."""


class PreconditionMissingError(PostDeploymentError):
    """A required environment identity is absent."""

    def __init__(self, setting: str):
        self.setting = setting
        super().__init__(f"Missing {setting} env!")


class ScriptTimeoutError(PostDeploymentError, TimeoutError):
    """A script exceeded its wall-clock budget and was killed."""

    def __init__(self, process_name: str, pid: Optional[int], timeout: float):
        self.process_name = process_name
        self.pid = pid
        self.timeout = timeout
        super().__init__(
            f"Process {process_name}({pid}) exceeded {int(timeout * 1000)}ms timeout"
        )


class NonZeroExitError(PostDeploymentError):
    """A script completed with a non-zero exit code."""

    def __init__(self, process_name: str, pid: Optional[int], exit_code: int):
        self.process_name = process_name
        self.pid = pid
        self.exit_code = exit_code
        super().__init__(f"Process {process_name}({pid}) exited with {exit_code} exitcode.")


class MalformedTriggerError(PostDeploymentError):
    """A function.json file is structurally invalid."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"{path} is invalid: {reason}")
