"""Regional network identity rotation through an external VPN client."""

from __future__ import annotations

import asyncio
import subprocess
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Sequence

import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from globecrawl.errors import ConfigError, IdentityLookupError, VpnClientError
from globecrawl.logging_config import get_logger
from globecrawl.models import Region

LOGGER = get_logger(__name__)

COMMAND_TIMEOUT_S = 60
DEFAULT_CONNECT_COMMAND = ("openvpn-gui", "--connect", "{region}")
DEFAULT_DISCONNECT_COMMAND = ("openvpn-gui", "--command", "disconnect_all")

Runner = Callable[[Sequence[str]], "subprocess.CompletedProcess[str]"]
Sleeper = Callable[[float], Awaitable[None]]


def run_command(argv: Sequence[str]) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        list(argv),
        capture_output=True,
        text=True,
        check=False,
        timeout=COMMAND_TIMEOUT_S,
    )


def parse_identity(output: str, marker: str = "IPv4") -> str:
    """Pull the address from the first ``marker`` line of interface-listing output."""

    for line in output.splitlines():
        if marker not in line or ":" not in line:
            continue
        value = line.split(":", 1)[1].strip()
        # Windows appends "(Preferred)" to the active address.
        value = value.split("(", 1)[0].strip()
        if value:
            return value
    raise IdentityLookupError(f"No '{marker}' line in network interface output")


@dataclass
class CommandIdentityLookup:
    """Reads the current address from a local interface command such as ``ipconfig``."""

    command: Sequence[str] = ("ipconfig",)
    marker: str = "IPv4"
    runner: Runner = run_command

    def __call__(self) -> str:
        try:
            completed = self.runner(self.command)
        except (OSError, subprocess.SubprocessError) as exc:
            raise IdentityLookupError(
                f"Cannot run identity lookup command {list(self.command)}: {exc}"
            ) from exc
        return parse_identity(completed.stdout or "", self.marker)


@dataclass
class HttpIdentityLookup:
    """Asks an address-echo service which public address the crawler appears from."""

    url: str = "https://api.ipify.org"
    timeout: float = 10.0
    session: Any = field(default_factory=requests.Session)

    def __call__(self) -> str:
        try:
            return self._fetch()
        except requests.RequestException as exc:
            raise IdentityLookupError(f"Identity lookup via {self.url} failed: {exc}") from exc

    @retry(
        retry=retry_if_exception_type(requests.RequestException),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, max=4),
        reraise=True,
    )
    def _fetch(self) -> str:
        response = self.session.get(self.url, timeout=self.timeout)
        response.raise_for_status()
        identity = response.text.strip()
        if not identity:
            raise IdentityLookupError(f"Identity lookup via {self.url} returned an empty body")
        return identity


@dataclass
class NetworkIdentityController:
    """Connects to and disconnects from regional VPN servers, confirming by address change.

    The client has no push notification for connection state, so both
    directions poll the observed identity with a fixed interval and a bounded
    attempt budget.
    """

    unaltered_identities: frozenset[str]
    lookup: Callable[[], str]
    home_region: Region | None = None
    connect_command: Sequence[str] = DEFAULT_CONNECT_COMMAND
    disconnect_command: Sequence[str] = DEFAULT_DISCONNECT_COMMAND
    disconnect_attempts: int = 60
    connect_attempts: int = 180
    poll_interval: float = 1.0
    settle_delay: float = 5.0
    runner: Runner = run_command
    sleep: Sleeper = asyncio.sleep

    def current_identity(self) -> str:
        return self.lookup()

    def _run_client(self, argv: Sequence[str]) -> bool:
        try:
            completed = self.runner(argv)
        except subprocess.TimeoutExpired:
            LOGGER.warning("VPN client timed out | command=%s", list(argv))
            return False
        except OSError as exc:
            raise VpnClientError(f"Cannot start VPN client {list(argv)}: {exc}") from exc
        if completed.returncode != 0:
            LOGGER.warning(
                "VPN client exited with %s | command=%s stderr=%s",
                completed.returncode,
                list(argv),
                (completed.stderr or "").strip(),
            )
            return False
        return True

    async def disconnect(self) -> bool:
        """Tear down any regional identity; best-effort, never raises on timeout."""

        try:
            self._run_client(self.disconnect_command)
        except VpnClientError as exc:
            LOGGER.warning("Disconnect command failed: %s", exc)

        for _ in range(self.disconnect_attempts):
            if self.current_identity() in self.unaltered_identities:
                return True
            await self.sleep(self.poll_interval)

        LOGGER.warning(
            "Identity did not return to an unaltered address after %d attempts",
            self.disconnect_attempts,
        )
        return False

    async def connect(self, region: Region) -> bool:
        """Switch to ``region``'s identity; ``False`` when it cannot be confirmed in time."""

        await self.disconnect()

        LOGGER.info("Connecting to region=%s", region)
        if region == self.home_region:
            return True

        argv = [part.format(region=region) for part in self.connect_command]
        if not self._run_client(argv):
            return False

        for attempt in range(1, self.connect_attempts + 1):
            await self.sleep(self.poll_interval)
            identity = self.current_identity()
            if identity not in self.unaltered_identities:
                LOGGER.info(
                    "Identity confirmed | region=%s identity=%s attempts=%d",
                    region,
                    identity,
                    attempt,
                )
                await self.sleep(self.settle_delay)
                return True

        LOGGER.warning(
            "Connection to region=%s not confirmed after %d attempts",
            region,
            self.connect_attempts,
        )
        return False


def build_lookup(lookup_conf: dict[str, Any]) -> Callable[[], str]:
    mode = str(lookup_conf.get("mode") or "command").lower()
    if mode == "command":
        return CommandIdentityLookup(
            command=tuple(lookup_conf.get("command") or ("ipconfig",)),
            marker=str(lookup_conf.get("marker") or "IPv4"),
        )
    if mode == "http":
        return HttpIdentityLookup(
            url=str(lookup_conf.get("url") or "https://api.ipify.org"),
            timeout=float(lookup_conf.get("timeout") or 10),
        )
    raise ConfigError(f"Unknown identity lookup mode: {mode}")


def build_identity_controller(
    config: dict[str, Any], unaltered_identities: frozenset[str]
) -> NetworkIdentityController:
    """Create a controller from the ``identity`` configuration section."""

    identity_conf = config.get("identity", {})
    return NetworkIdentityController(
        unaltered_identities=unaltered_identities,
        lookup=build_lookup(identity_conf.get("lookup", {})),
        home_region=identity_conf.get("home_region") or None,
        connect_command=tuple(identity_conf.get("connect_command") or DEFAULT_CONNECT_COMMAND),
        disconnect_command=tuple(
            identity_conf.get("disconnect_command") or DEFAULT_DISCONNECT_COMMAND
        ),
        disconnect_attempts=max(1, int(identity_conf.get("disconnect_attempts", 60))),
        connect_attempts=max(1, int(identity_conf.get("connect_attempts", 180))),
        poll_interval=max(0.0, float(identity_conf.get("poll_interval", 1.0))),
        settle_delay=max(0.0, float(identity_conf.get("settle_delay", 5.0))),
    )
