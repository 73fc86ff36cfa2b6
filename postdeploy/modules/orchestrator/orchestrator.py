"""
Post-deployment orchestrator.

The public coroutines of PostDeploymentOrchestrator are a stable contract:
the hosting integration calls them by name with the documented arguments.
The caller is responsible for ensuring only one orchestration runs at a
time.
"""

import asyncio
import ipaddress
import json
import logging
import re
import uuid
from datetime import timedelta
from pathlib import Path
from typing import Awaitable, List, Optional, Union
from urllib.parse import quote

import httpx

from postdeploy.config.provider import PostDeploymentConfig
from postdeploy.modules.control_plane import ControlPlaneClient, display_url
from postdeploy.modules.marker import AutoSwapLock, PendingOperationMarker
from postdeploy.modules.retry import RetryPolicy
from postdeploy.modules.scripts import ProcessResult, ScriptRunner, discover_scripts
from postdeploy.modules.triggers import build_trigger_payload

logger = logging.getLogger("postdeploy.orchestrator")

SET_TRIGGERS_PATH = "/operations/settriggers"
RESTART_API_PATH = "/operations/restartsite"


def _outcome(exception: Optional[BaseException]) -> str:
    return "successful." if exception is None else f"failed with {exception!r}"


_LABEL = r"[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?"
_HOST_AUTHORITY = re.compile(rf"^{_LABEL}(?:\.{_LABEL})*(?::\d{{1,5}})?$")
_IPV6_AUTHORITY = re.compile(r"^\[([0-9A-Fa-f:.]+)\](?::\d{1,5})?$")
_PATH_SEGMENT = re.compile(r"^[A-Za-z0-9._~-]+$")


def _is_valid_authority(authority: str) -> bool:
    """host[:port] with a DNS name, IPv4 address or bracketed IPv6 address."""
    match = _IPV6_AUTHORITY.match(authority)
    if match:
        try:
            ipaddress.IPv6Address(match.group(1))
        except ValueError:
            return False
        return True
    return bool(_HOST_AUTHORITY.match(authority))


def _validate_url(url: str, operation: str, authority: str, *segments: str) -> str:
    """
    Reject URLs built from a bad hostname or path segment.

    httpx percent-encodes most bad input instead of failing, so the
    caller-supplied parts are checked before the assembled URL.
    """
    if not _is_valid_authority(authority) or not all(_PATH_SEGMENT.match(s) for s in segments):
        raise ValueError(f"Malformed URI is used in {operation}")
    try:
        parsed = httpx.URL(url)
    except httpx.InvalidURL as e:
        raise ValueError(f"Malformed URI is used in {operation}") from e
    if not parsed.scheme or not parsed.host:
        raise ValueError(f"Malformed URI is used in {operation}")
    return url


class PostDeploymentOrchestrator:
    """Sequences script execution, trigger sync and auto-swap."""

    def __init__(
        self,
        config: PostDeploymentConfig,
        control_plane: Optional[ControlPlaneClient] = None,
        script_runner: Optional[ScriptRunner] = None,
        auto_swap_lock: Optional[AutoSwapLock] = None,
        pending_marker: Optional[PendingOperationMarker] = None,
        restart_policy: Optional[RetryPolicy] = None,
        tracer: Optional[logging.Logger] = None,
    ):
        """
        Initialize orchestrator.

        Args:
            config: Post-deployment configuration
            control_plane: Control-plane client
            script_runner: Runner for post-deployment scripts
            auto_swap_lock: Auto-swap sentinel
            pending_marker: Heartbeat marker for long operations
            restart_policy: Retry policy for restart requests (5 x 5s)
            tracer: Default logger, overridable per call
        """
        self.config = config
        self.tracer = tracer or logger
        self.control_plane = control_plane or ControlPlaneClient(config, tracer=self.tracer)
        self.script_runner = script_runner or ScriptRunner(config.command_timeout, tracer=self.tracer)
        self.auto_swap_lock = auto_swap_lock or AutoSwapLock(config.auto_swap_lock_path, tracer=self.tracer)
        self.pending_marker = pending_marker or PendingOperationMarker(
            config.pending_operation_marker_path,
            config.is_managed_environment,
            tracer=self.tracer,
        )
        self.restart_policy = restart_policy or RetryPolicy.for_restart()

    async def run(
        self,
        request_id: str,
        site_restricted_jwt: Optional[str] = None,
        tracer: Optional[logging.Logger] = None,
    ) -> None:
        """
        Run every post-deployment step for a deployment event.

        Args:
            request_id: Correlation id forwarded to the control plane
            site_restricted_jwt: Unused, kept for callers of the stable signature
            tracer: Logger for this run
        """
        await self.run_post_deployment_scripts(tracer)
        await self.sync_function_triggers(request_id, tracer)
        await self.perform_auto_swap(request_id, tracer)

    async def run_post_deployment_scripts(
        self, tracer: Optional[logging.Logger] = None
    ) -> List[ProcessResult]:
        """Run discovered scripts in order; the first failure aborts the rest."""
        scripts = discover_scripts(self.config.post_deployment_scripts_dir)
        return await self.script_runner.run_all(scripts, tracer or self.tracer)

    async def sync_function_triggers(
        self,
        request_id: str,
        tracer: Optional[logging.Logger] = None,
        functions_path: Optional[Union[str, Path]] = None,
    ) -> None:
        """
        Send the function trigger payload to the control plane.

        Skipped unless the functions runtime is enabled on a dynamically
        scaled plan. Chains into sync_logic_app_json on success.
        """
        tracer = tracer or self.tracer

        if not self.config.functions_runtime_version:
            tracer.debug("Skip function trigger and logicapp sync because function is not enabled.")
            return

        if not self.config.is_trigger_sync_enabled:
            tracer.debug(
                "Skip function trigger and logicapp sync because sku (%s) is not dynamic (consumption plan).",
                self.config.website_sku,
            )
            return

        self.control_plane.verify_environment()

        path = Path(functions_path) if functions_path else self.config.functions_path
        triggers = await asyncio.to_thread(build_trigger_payload, path, self.config.environ, tracer)
        content = json.dumps(triggers, separators=(",", ":"))

        exception = None
        try:
            await self.control_plane.post(SET_TRIGGERS_PATH, request_id, content, tracer=tracer)
        except Exception as e:
            exception = e
            raise
        finally:
            tracer.info(
                "Syncing %d function triggers with payload size %d bytes %s",
                len(triggers),
                len(content.encode("utf-8")),
                _outcome(exception),
            )

        # Couples with the trigger sync
        await self.sync_logic_app_json(request_id, tracer)

    async def sync_logic_app_json(
        self, request_id: str, tracer: Optional[logging.Logger] = None
    ) -> None:
        """PUT logicapp.json to LOGICAPP_URL when both exist."""
        tracer = tracer or self.tracer

        logic_app_url = self.config.logic_app_url
        if not logic_app_url:
            return

        json_path = self.config.logic_app_json_path
        if not json_path.is_file():
            tracer.debug("File %s does not exists", json_path)
            return

        shown_url = display_url(logic_app_url)
        content = await asyncio.to_thread(json_path.read_text, encoding="utf-8")

        exception = None
        try:
            await self.control_plane.put(logic_app_url, request_id, content, tracer=tracer)
        except Exception as e:
            exception = e
            raise
        finally:
            tracer.info(
                "Syncing logicapp %s with payload size %d bytes %s",
                shown_url,
                len(content.encode("utf-8")),
                _outcome(exception),
            )

    def is_auto_swap_enabled(self) -> bool:
        return self.config.is_auto_swap_enabled

    def is_auto_swap_ongoing(self) -> bool:
        """Auto-swap is ongoing if the lock was written less than 2 minutes ago."""
        if not self.is_auto_swap_enabled():
            return False
        return self.auto_swap_lock.is_active()

    async def perform_auto_swap(
        self, request_id: str, tracer: Optional[logging.Logger] = None
    ) -> None:
        """Request a swap into the configured slot and mark it ongoing."""
        tracer = tracer or self.tracer

        slot = self.config.swap_slot_name
        if not slot:
            tracer.debug("AutoSwap is not enabled")
            return

        self.control_plane.verify_environment()

        operation_id = f"AUTOSWAP{uuid.uuid4()}"
        path = f"/operations/autoswap?slot={quote(slot, safe='')}&operationId={operation_id}"

        exception = None
        try:
            await self.control_plane.post(path, request_id, tracer=tracer)
            self.auto_swap_lock.write(tracer)
        except Exception as e:
            exception = e
            raise
        finally:
            tracer.info(
                "Requesting auto swap to '%s' slot with '%s' id %s",
                slot,
                operation_id,
                _outcome(exception),
            )

    async def restart_main_site(
        self, request_id: str, tracer: Optional[logging.Logger] = None
    ) -> None:
        """Request a site restart, retrying on failure."""
        tracer = tracer or self.tracer
        tracer.info("Requesting site restart")

        self.control_plane.verify_environment()

        attempt_count = 0

        async def _restart() -> None:
            nonlocal attempt_count
            attempt_count += 1
            tracer.info("Requesting site restart. Attempt #%d", attempt_count)
            await self.control_plane.post(RESTART_API_PATH, request_id, tracer=tracer)
            tracer.info("Successfully requested a restart. Attempt #%d", attempt_count)

        try:
            await self.restart_policy.attempt(_restart, tracer)
        except Exception as e:
            tracer.info(
                "Failed to request a restart. Number of attempts: %d. Exception: %r",
                attempt_count,
                e,
            )
            raise

    async def remove_all_workers(
        self,
        website_hostname: str,
        site_name: str,
        tracer: Optional[logging.Logger] = None,
    ) -> None:
        """
        Remove all site workers after cloud-built content is uploaded.

        Raises:
            ValueError: The request URL is malformed
            httpx.HTTPError: The request failed
        """
        tracer = tracer or self.tracer

        token = quote(self.control_plane.signer.create_token(), safe="")
        url = _validate_url(
            f"http://{website_hostname}/operations/removeworker/{site_name}/allStandard?token={token}",
            "RemoveAllWorkers",
            website_hostname,
            site_name,
        )
        tracer.info("Calling RemoveAllWorkers to refresh the function app")

        await self._traced_status(self.control_plane.get(url, tracer=tracer), "RemoveAllWorkers", tracer)

    async def update_website_run_from_package(
        self, blob_sas: str, tracer: Optional[logging.Logger] = None
    ) -> None:
        """
        Point WEBSITE_RUN_FROM_PACKAGE at the latest package blob.

        Args:
            blob_sas: Unencrypted SAS uri of the destination blob
        """
        tracer = tracer or self.tracer

        host = self.control_plane.verify_environment()
        encrypted = quote(self.control_plane.signer.encrypt(blob_sas), safe="")
        protocol = "http" if self.config.skip_ssl_validation else "https"
        url = _validate_url(
            f"{protocol}://{host}/operations/set-run-from-pkg?run-from-pkg-path={encrypted}",
            "SetRunFromPkg",
            host,
        )
        tracer.info("Calling scm SetRunFromPkg to update WEBSITE_RUN_FROM_PACKAGE for the function app")

        await self._traced_status(self.control_plane.post_url(url, tracer=tracer), "SetRunFromPkg", tracer)

    async def perform_function_host_sync_triggers(
        self, website_hostname: str, tracer: Optional[logging.Logger] = None
    ) -> None:
        """Invoke the function host's synctriggers endpoint to warm up the app."""
        tracer = tracer or self.tracer

        url = _validate_url(
            f"http://{website_hostname}/admin/host/synctriggers",
            "function host sync trigger",
            website_hostname,
        )
        tracer.info("Calling function host synctrigger %s/admin/host/synctriggers", website_hostname)

        await self._traced_status(
            self.control_plane.post_url(url, tracer=tracer), "FunctionHostSyncTrigger", tracer
        )

    async def update_package_name(
        self, zip_name: str, tracer: Optional[logging.Logger] = None
    ) -> None:
        """Record the name of the deployed package in packagename.txt."""
        tracer = tracer or self.tracer

        path = self.config.package_name_path
        tracer.info("Updating %s with deployment %s", path, zip_name)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(zip_name, encoding="utf-8")

        await asyncio.to_thread(_write)

    async def track_pending_operation(
        self, task: Awaitable, timeout: Optional[timedelta] = None
    ) -> asyncio.Future:
        """
        Keep the pending-operation marker fresh while task runs.

        Returns the scheduled task; it is not done if tracking timed out.
        """
        return await self.pending_marker.track(task, timeout)

    @staticmethod
    async def _traced_status(
        call: Awaitable[httpx.Response], operation: str, tracer: logging.Logger
    ) -> httpx.Response:
        """Log the status code of a call whether or not it succeeded."""
        try:
            response = await call
        except httpx.HTTPStatusError as e:
            tracer.info("%s, statusCode = %s", operation, e.response.status_code)
            raise
        tracer.info("%s, statusCode = %s", operation, response.status_code)
        return response
