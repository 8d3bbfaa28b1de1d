#!/usr/bin/env python3
"""Remote Command Executor over SSH.

Runs exactly one command per call on the network gateway that holds the
firewall rules. Every call opens its own authenticated session and closes it
afterwards; nothing is retained between calls and nothing is retried.

Features:
    - Commands are argument vectors, rendered with shell quoting
    - Fixed per-command timeout (connect and execution)
    - Global cap on outstanding sessions, shared by every caller
    - Transport failures classified as ConnectionError / CommandTimeout

Paramiko is blocking, so the session runs in a worker thread. The socket
carries the same timeout as the asyncio wait, so a timed-out worker still
finishes shortly after; its session slot is only released once it has.

Environment Variables:
    SSH_HOST, SSH_PORT (22), SSH_USER, SSH_PASS or SSH_KEY_FILE
    SSH_KNOWN_HOSTS: Extra known_hosts file
    SSH_STRICT_HOST_KEYS: Reject unknown host keys (default: true)
    SSH_CONNECT_TIMEOUT_SECONDS (10), SSH_COMMAND_TIMEOUT_SECONDS (15)
    SSH_MAX_SESSIONS (4)

Example:
    executor = SSHCommandExecutor(SSHConfig.from_env())
    result = await executor.run(["iptables", "-S", "INPUT"])
    print(result.exit_status, result.output)
"""
import asyncio
import logging
import os
import shlex
import socket
from dataclasses import dataclass
from typing import Optional, Sequence

import paramiko
from dotenv import load_dotenv

from .exceptions import CommandTimeout, ConfigurationError, ConnectionError

load_dotenv()

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one remote command.

    Attributes:
        exit_status: Remote exit status (0 = predicate true / action succeeded)
        output: Captured stdout followed by stderr
    """

    exit_status: int
    output: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_status == 0


@dataclass
class SSHConfig:
    """Static connection settings for the remote command channel."""

    host: str
    username: str
    port: int = 22
    password: Optional[str] = None
    key_filename: Optional[str] = None
    known_hosts: Optional[str] = None
    strict_host_keys: bool = True
    connect_timeout: float = 10.0
    command_timeout: float = 15.0
    max_sessions: int = 4

    @classmethod
    def from_env(cls) -> "SSHConfig":
        """Load settings from SSH_* environment variables.

        Raises:
            ConfigurationError: If host, user or a credential is missing
        """
        host = os.getenv("SSH_HOST")
        username = os.getenv("SSH_USER")
        password = os.getenv("SSH_PASS") or None
        key_filename = os.getenv("SSH_KEY_FILE") or None

        missing = []
        if not host:
            missing.append("SSH_HOST")
        if not username:
            missing.append("SSH_USER")
        if not password and not key_filename:
            missing.append("SSH_PASS or SSH_KEY_FILE")
        if missing:
            raise ConfigurationError(
                f"Missing required environment variables: {', '.join(missing)}",
                missing_keys=missing,
            )

        return cls(
            host=host,
            username=username,
            port=int(os.getenv("SSH_PORT", "22")),
            password=password,
            key_filename=key_filename,
            known_hosts=os.getenv("SSH_KNOWN_HOSTS") or None,
            strict_host_keys=os.getenv("SSH_STRICT_HOST_KEYS", "true").lower() == "true",
            connect_timeout=float(os.getenv("SSH_CONNECT_TIMEOUT_SECONDS", "10")),
            command_timeout=float(os.getenv("SSH_COMMAND_TIMEOUT_SECONDS", "15")),
            max_sessions=int(os.getenv("SSH_MAX_SESSIONS", "4")),
        )

    def __repr__(self) -> str:
        # Never include credentials
        return (
            f"SSHConfig(host={self.host!r}, port={self.port}, user={self.username!r}, "
            f"command_timeout={self.command_timeout}s, max_sessions={self.max_sessions})"
        )


class SSHCommandExecutor:
    """One-shot SSH command runner with a global session cap.

    Attributes:
        config: Connection settings
    """

    def __init__(self, config: SSHConfig):
        if config.max_sessions < 1:
            raise ConfigurationError("SSH_MAX_SESSIONS must be at least 1")
        self.config = config
        self._sessions = asyncio.Semaphore(config.max_sessions)

    async def run(self, argv: Sequence[str]) -> CommandResult:
        """Run one command on the remote host.

        Args:
            argv: Program and arguments; each element is quoted, never
                interpreted by the remote shell

        Returns:
            CommandResult with the remote exit status and output

        Raises:
            ConnectionError: Host unreachable, refused, auth or protocol failure
            CommandTimeout: No completion within config.command_timeout
        """
        if not argv:
            raise ValueError("argv must not be empty")
        command_line = shlex.join(argv)
        budget = self.config.connect_timeout + self.config.command_timeout

        await self._sessions.acquire()
        loop = asyncio.get_running_loop()
        try:
            future = loop.run_in_executor(None, self._run_blocking, command_line)
        except BaseException:
            self._sessions.release()
            raise
        future.add_done_callback(self._on_session_done)

        try:
            return await asyncio.wait_for(asyncio.shield(future), timeout=budget)
        except asyncio.TimeoutError:
            logger.warning(f"Command timed out on {self.config.host} after {budget:.0f}s: {argv[0]}")
            raise CommandTimeout(
                timeout_seconds=budget,
                host=self.config.host,
            )

    def _on_session_done(self, future: asyncio.Future) -> None:
        self._sessions.release()
        # Mark exceptions of abandoned (timed-out) workers as retrieved
        if not future.cancelled():
            future.exception()

    def _connect(self) -> paramiko.SSHClient:
        client = paramiko.SSHClient()
        client.load_system_host_keys()
        if self.config.known_hosts:
            client.load_host_keys(self.config.known_hosts)
        if self.config.strict_host_keys:
            client.set_missing_host_key_policy(paramiko.RejectPolicy())
        else:
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

        client.connect(
            hostname=self.config.host,
            port=self.config.port,
            username=self.config.username,
            password=self.config.password,
            key_filename=self.config.key_filename,
            timeout=self.config.connect_timeout,
            banner_timeout=self.config.connect_timeout,
            auth_timeout=self.config.connect_timeout,
            allow_agent=False,
            look_for_keys=self.config.key_filename is None and self.config.password is None,
        )
        return client

    def _run_blocking(self, command_line: str) -> CommandResult:
        """Open a session, run the command, close the session (worker thread)."""
        host = self.config.host
        client = None
        try:
            try:
                client = self._connect()
            except (socket.timeout, TimeoutError) as e:
                raise CommandTimeout(
                    "Timed out connecting to remote host",
                    timeout_seconds=self.config.connect_timeout,
                    host=host,
                    cause=e,
                )
            except paramiko.AuthenticationException as e:
                raise ConnectionError("Authentication failed", host=host, cause=e)
            except (paramiko.SSHException, OSError) as e:
                raise ConnectionError(f"Failed to connect to remote host: {e}", host=host, cause=e)

            try:
                _, stdout, stderr = client.exec_command(
                    command_line,
                    timeout=self.config.command_timeout,
                )
                out = stdout.read().decode(errors="replace")
                err = stderr.read().decode(errors="replace")
                exit_status = stdout.channel.recv_exit_status()
            except (socket.timeout, TimeoutError) as e:
                raise CommandTimeout(
                    timeout_seconds=self.config.command_timeout,
                    host=host,
                    cause=e,
                )
            except (paramiko.SSHException, OSError) as e:
                raise ConnectionError(f"Remote session failed: {e}", host=host, cause=e)

            logger.debug(f"Remote command finished on {host} with exit status {exit_status}")
            return CommandResult(exit_status=exit_status, output=out + err)
        finally:
            if client is not None:
                client.close()


__all__ = [
    "CommandResult",
    "SSHConfig",
    "SSHCommandExecutor",
]
