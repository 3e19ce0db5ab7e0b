"""Access to the local host.

``CommandRunner`` is the single boundary for external tools (package
managers, systemctl, kubeadm, kubectl). ``HostState`` answers questions
about the machine and performs file mutations relative to a root
directory, so idempotence checks are explicit queries rather than side
effects of shell commands.
"""

import logging
import os
import platform
import pwd
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Mapping, Optional, Sequence, Union

from ...config import Config
from .errors import ExternalToolError, InstallationError
from .models import InvokingUser

logger = logging.getLogger("kubeprep.provision.host")

SEARCH_PATH = (
    '/usr/local/sbin',
    '/usr/local/bin',
    '/usr/sbin',
    '/usr/bin',
    '/sbin',
    '/bin',
)

PathLike = Union[str, Path]


@dataclass(frozen=True)
class CommandResult:
    argv: List[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def format_argv(argv: Sequence[str]) -> str:
    return ' '.join(shlex.quote(a) for a in argv)


class CommandRunner:
    """Run external commands with consistent logging and error signaling."""

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = Config.COMMAND_TIMEOUT if timeout is None else timeout

    def run(
        self,
        argv: Sequence[str],
        *,
        check: bool = True,
        input_text: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        """Run a command and capture its output.

        Args:
            argv: Command and arguments
            check: Raise ExternalToolError on a non-zero exit status
            input_text: Text written to the command's stdin
            env: Extra environment variables
            timeout: Seconds before the command is killed

        Returns:
            CommandResult: The captured result

        Raises:
            ExternalToolError: If the command is missing, times out, or fails with check=True
        """
        argv_list = [str(a) for a in argv]
        logger.debug(f"CMD {format_argv(argv_list)}")

        try:
            proc = subprocess.run(
                argv_list,
                input=input_text,
                text=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=dict(os.environ, **(env or {})),
                timeout=timeout if timeout is not None else self.timeout,
            )
        except FileNotFoundError as e:
            raise ExternalToolError(argv_list, 127, message=f"Command not found: {argv_list[0]}") from e
        except subprocess.TimeoutExpired as e:
            raise ExternalToolError(
                argv_list, None, message=f"Command timed out after {e.timeout}s: {format_argv(argv_list)}"
            ) from e

        if proc.stdout:
            logger.debug(f"STDOUT {proc.stdout.strip()}")
        if proc.stderr:
            logger.debug(f"STDERR {proc.stderr.strip()}")

        result = CommandResult(argv_list, proc.returncode, proc.stdout, proc.stderr)
        if check and not result.ok:
            raise ExternalToolError(argv_list, result.returncode, result.stderr)
        return result


class HostState:
    """Queries and file mutations on the host, relative to ``root``."""

    def __init__(self, runner: CommandRunner, root: PathLike = '/'):
        self.runner = runner
        self.root = Path(root)

    def path(self, path: PathLike) -> Path:
        """Map an absolute host path under the configured root."""
        return self.root / str(path).lstrip('/')

    # Files

    def exists(self, path: PathLike) -> bool:
        return self.path(path).exists()

    def read_text(self, path: PathLike, default: Optional[str] = None) -> Optional[str]:
        try:
            return self.path(path).read_text(encoding='utf-8')
        except FileNotFoundError:
            return default

    def write_text(self, path: PathLike, content: str, mode: Optional[int] = None) -> Path:
        target = self.path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding='utf-8')
        if mode is not None:
            os.chmod(target, mode)
        return target

    def write_if_changed(self, path: PathLike, content: str, mode: Optional[int] = None) -> bool:
        """Write a file only when its content differs. Returns True if written."""
        if self.read_text(path) == content:
            logger.debug(f"{path} already up to date")
            return False
        self.write_text(path, content, mode=mode)
        return True

    def makedirs(self, path: PathLike, mode: int = 0o755) -> Path:
        target = self.path(path)
        target.mkdir(parents=True, exist_ok=True, mode=mode)
        return target

    def which(self, name: str) -> Optional[Path]:
        """Find an executable on the fixed system search path."""
        for directory in SEARCH_PATH:
            candidate = self.path(directory) / name
            if candidate.is_file() and os.access(candidate, os.X_OK):
                return candidate
        return None

    # System facts

    def is_privileged(self) -> bool:
        return os.geteuid() == 0

    def cpu_count(self) -> int:
        return os.cpu_count() or 1

    def memory_gib(self) -> int:
        """Total memory in whole GiB, floored the way ``free -g`` reports it."""
        meminfo = self.read_text('/proc/meminfo', default='')
        for line in meminfo.splitlines():
            if line.startswith('MemTotal:'):
                kib = int(line.split()[1])
                return kib // (1024 * 1024)
        return 0

    def machine(self) -> str:
        return platform.machine()

    def current_hostname(self) -> str:
        return (self.read_text('/etc/hostname', default='') or '').strip()

    def swap_enabled(self) -> bool:
        """True when /proc/swaps lists at least one active device."""
        lines = (self.read_text('/proc/swaps', default='') or '').strip().splitlines()
        return len(lines) > 1

    def ip_forward_enabled(self) -> bool:
        value = self.read_text('/proc/sys/net/ipv4/ip_forward', default='0') or '0'
        return value.strip() == '1'

    def service_active(self, name: str) -> bool:
        result = self.runner.run(['systemctl', 'is-active', name], check=False)
        return result.stdout.strip() == 'active'

    def invoking_user(self) -> InvokingUser:
        """The user behind sudo, or the current user when not run through sudo.

        A ``SUDO_USER`` without a passwd entry falls back to the current user.

        Raises:
            InstallationError: If the current user has no passwd entry either
        """
        entry = None
        sudo_user = os.environ.get('SUDO_USER')
        if sudo_user:
            try:
                entry = pwd.getpwnam(sudo_user)
            except KeyError:
                logger.warning(f"SUDO_USER {sudo_user} has no passwd entry, using the current user")

        if entry is None:
            uid = os.geteuid()
            try:
                entry = pwd.getpwuid(uid)
            except KeyError as e:
                raise InstallationError(f"No passwd entry for uid {uid}: cannot place the kubeconfig") from e

        return InvokingUser(
            name=entry.pw_name,
            uid=entry.pw_uid,
            gid=entry.pw_gid,
            home=Path(entry.pw_dir),
        )
