"""Error taxonomy for the provisioning pipeline.

Every error aborts the pipeline. The ``category`` is what the CLI reports
next to the message on the diagnostic stream.
"""

from typing import Optional, Sequence


class ProvisioningError(Exception):
    """Base class for all provisioning failures."""
    category = "provisioning"


class PrivilegeError(ProvisioningError):
    """Raised when the pipeline does not run with root privileges."""
    category = "permission"


class ResourceError(ProvisioningError):
    """Raised when CPU or memory is below the supported minimum."""
    category = "resource"


class ConfigurationError(ProvisioningError):
    """Raised when a persisted setting does not verify after being applied."""
    category = "configuration"


class UnsupportedPlatformError(ProvisioningError):
    """Raised when the OS family or CPU architecture is not supported."""
    category = "unsupported-platform"


class VersionResolutionError(ProvisioningError):
    """Raised when an upstream source yields no usable version."""
    category = "version-resolution"

    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"Could not resolve {source} version: {reason}")


class InstallationError(ProvisioningError):
    """Raised when an artifact is missing or unusable after placement."""
    category = "installation"


class ExternalToolError(ProvisioningError):
    """Raised when a wrapped command fails, times out or is missing."""
    category = "external-tool"

    def __init__(
        self,
        argv: Sequence[str],
        returncode: Optional[int],
        stderr: str = "",
        message: Optional[str] = None,
    ):
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = stderr
        if message is None:
            message = f"Command failed ({returncode}): {' '.join(self.argv)}"
            tail = stderr.strip().splitlines()[-5:]
            if tail:
                message += "\n" + "\n".join(tail)
        super().__init__(message)
