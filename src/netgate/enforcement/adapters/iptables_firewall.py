"""iptables adapter for the remote enforcement surface.

This adapter implements IFirewall on top of SSHCommandExecutor. Every rule
it touches has the same shape:

    iptables <op> <chain> -s <address> -m comment --comment block-<id> -j DROP

with <op> one of -C (check), -A (add) and -D (remove). IPv6 addresses use
ip6tables. Parameters are validated before a command is built, and the
command is handed to the executor as an argument vector.
"""

import ipaddress
import logging
import re
from typing import TYPE_CHECKING

from ...api.exceptions import (
    CommandTimeout,
    CommandValidationError,
    ConnectionError,
    EnforcementFailure,
    NetworkError,
)
from ..domain.entities import RuleState
from ..domain.ports import IFirewall

if TYPE_CHECKING:
    from ...api.ssh import CommandResult, SSHCommandExecutor

logger = logging.getLogger(__name__)

SUBSCRIBER_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]{0,63}$")
CHAIN_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9_-]{0,28}$")

CHECK = "-C"
ADD = "-A"
REMOVE = "-D"


def validate_address(address: str) -> str:
    """Return the canonical form of an IPv4/IPv6 address.

    Raises:
        CommandValidationError: If address is not a literal IP address
    """
    if not isinstance(address, str):
        raise CommandValidationError("Address must be a string", field="address")
    try:
        return str(ipaddress.ip_address(address.strip()))
    except ValueError:
        raise CommandValidationError(
            "Address is not a valid IPv4 or IPv6 address",
            field="address",
            value=address,
        )


def validate_subscriber_id(subscriber_id: str) -> str:
    """Check a subscriber id against the identifier allow-list.

    Raises:
        CommandValidationError: If it contains anything but [A-Za-z0-9_-]
    """
    if not isinstance(subscriber_id, str) or not SUBSCRIBER_ID_PATTERN.match(subscriber_id):
        raise CommandValidationError(
            "Subscriber id must be 1-64 characters of [A-Za-z0-9_-]",
            field="subscriber_id",
            value=str(subscriber_id),
        )
    return subscriber_id


class IptablesFirewall(IFirewall):
    """Block rules on a remote Linux gateway, managed over SSH.

    Args:
        executor: Remote command executor
        chain: Chain holding the block rules (default INPUT)
        use_sudo: Prefix commands with "sudo -n"
    """

    def __init__(
        self,
        executor: "SSHCommandExecutor",
        chain: str = "INPUT",
        use_sudo: bool = False,
    ):
        if not CHAIN_PATTERN.match(chain):
            raise CommandValidationError("Invalid firewall chain name", field="chain", value=chain)
        self.executor = executor
        self.chain = chain
        self.use_sudo = use_sudo

    def build_command(self, operation: str, address: str, subscriber_id: str) -> list[str]:
        """Build the argument vector for one of the three rule operations.

        Raises:
            CommandValidationError: If address or subscriber_id is rejected
        """
        if operation not in (CHECK, ADD, REMOVE):
            raise ValueError(f"Unknown rule operation: {operation}")

        canonical = validate_address(address)
        validate_subscriber_id(subscriber_id)

        program = "ip6tables" if ipaddress.ip_address(canonical).version == 6 else "iptables"
        argv = [
            program, operation, self.chain,
            "-s", canonical,
            "-m", "comment", "--comment", f"block-{subscriber_id}",
            "-j", "DROP",
        ]
        if self.use_sudo:
            argv = ["sudo", "-n", *argv]
        return argv

    async def exists(self, address: str, subscriber_id: str) -> RuleState:
        argv = self.build_command(CHECK, address, subscriber_id)
        try:
            result = await self.executor.run(argv)
        except (ConnectionError, CommandTimeout) as e:
            logger.warning(f"Probe for {subscriber_id} ({address}) indeterminate: {e.message}")
            return RuleState.INDETERMINATE

        return RuleState.PRESENT if result.ok else RuleState.ABSENT

    async def add_block(self, address: str, subscriber_id: str) -> None:
        await self._apply(ADD, "block", address, subscriber_id)

    async def remove_block(self, address: str, subscriber_id: str) -> None:
        await self._apply(REMOVE, "unblock", address, subscriber_id)

    async def _apply(self, operation: str, action: str, address: str, subscriber_id: str) -> "CommandResult":
        argv = self.build_command(operation, address, subscriber_id)
        try:
            result = await self.executor.run(argv)
        except NetworkError as e:
            raise EnforcementFailure(
                subscriber_id=subscriber_id,
                address=address,
                action=action,
                cause=e,
            )

        if not result.ok:
            raise EnforcementFailure(
                subscriber_id=subscriber_id,
                address=address,
                action=action,
                exit_status=result.exit_status,
                output=result.output.strip(),
            )

        logger.info(f"Applied {action} for {subscriber_id} ({address})")
        return result
