"""
Tests for the PostDeploymentOrchestrator.

The orchestrator is wired to real modules; only HTTP, DNS and sleeping
are replaced.
"""

import asyncio
import json
import logging
from unittest.mock import AsyncMock

import httpx
import pytest

from conftest import TEST_KEY_HEX
from postdeploy.errors import PreconditionMissingError
from postdeploy.modules.control_plane import decrypt_value
from postdeploy.modules.control_plane.token import key_bytes
from postdeploy.modules.marker import AutoSwapLock, PendingOperationMarker
from postdeploy.modules.orchestrator import PostDeploymentOrchestrator
from postdeploy.modules.retry import RetryPolicy
from postdeploy.modules.scripts import ScriptRunner


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def make_orchestrator(make_config, make_client, sleeps):
    """Factory for orchestrators; config overrides are passed through."""
    def _make(script_runner=None, **overrides):
        config = make_config(**overrides)

        async def fake_sleep(seconds):
            sleeps.append(seconds)

        return PostDeploymentOrchestrator(
            config,
            control_plane=make_client(config),
            script_runner=script_runner,
            restart_policy=RetryPolicy(5, 5000, sleep=fake_sleep),
        )

    return _make


def write_function(config, name, bindings):
    directory = config.functions_path / name
    directory.mkdir(parents=True)
    (directory / "function.json").write_text(json.dumps({"bindings": bindings}))


CONSUMPTION = {"functions_runtime_version": "~4", "website_sku": "Dynamic"}


# =============================================================================
# Full run
# =============================================================================

class TestRun:
    """Scripts, trigger sync and auto-swap in sequence."""

    @pytest.mark.asyncio
    async def test_steps_in_order(self, make_orchestrator, http_mocker):
        runner = AsyncMock(spec=ScriptRunner)
        runner.run_all.return_value = []
        orchestrator = make_orchestrator(script_runner=runner, swap_slot_name="production", **CONSUMPTION)
        write_function(orchestrator.config, "api", [{"type": "httpTrigger", "name": "req"}])

        await orchestrator.run("req-1")

        runner.run_all.assert_awaited_once()
        paths = [r.url.path for r in http_mocker.requests]
        assert paths == ["/operations/settriggers", "/operations/autoswap"]

    @pytest.mark.asyncio
    async def test_script_failure_aborts_run(self, make_orchestrator, http_mocker):
        runner = AsyncMock(spec=ScriptRunner)
        runner.run_all.side_effect = RuntimeError("script failed")
        orchestrator = make_orchestrator(script_runner=runner, swap_slot_name="production", **CONSUMPTION)

        with pytest.raises(RuntimeError):
            await orchestrator.run("req-2")

        assert http_mocker.requests == []

    @pytest.mark.asyncio
    async def test_nothing_enabled(self, make_orchestrator, http_mocker, tmp_path):
        """Without scripts, functions or a swap slot no request is made."""
        orchestrator = make_orchestrator(post_deployment_actions_dir=str(tmp_path / "none"))

        await orchestrator.run("req-3")

        assert http_mocker.requests == []


# =============================================================================
# Trigger sync
# =============================================================================

class TestSyncFunctionTriggers:
    """settriggers and logic app sync."""

    @pytest.mark.asyncio
    async def test_payload(self, make_orchestrator, http_mocker, caplog):
        orchestrator = make_orchestrator(**CONSUMPTION)
        write_function(orchestrator.config, "api", [
            {"type": "httpTrigger", "name": "req"},
            {"type": "http", "name": "res"},
        ])

        with caplog.at_level(logging.INFO, logger="postdeploy"):
            await orchestrator.sync_function_triggers("req-4")

        request = http_mocker.requests_to("/operations/settriggers")[0]
        assert json.loads(request.content) == [
            {"type": "httpTrigger", "name": "req", "functionName": "api"}
        ]
        assert request.headers["x-ms-request-id"] == "req-4"
        assert any(
            r.getMessage().startswith("Syncing 1 function triggers with payload size")
            and r.getMessage().endswith("successful.")
            for r in caplog.records
        )

    @pytest.mark.asyncio
    async def test_elastic_premium_plan_syncs(self, make_orchestrator, http_mocker):
        orchestrator = make_orchestrator(
            functions_runtime_version="~4", website_sku="ElasticPremium", elastic_scale_enabled="1"
        )
        orchestrator.config.functions_path.mkdir(parents=True)

        await orchestrator.sync_function_triggers("req-5")

        assert json.loads(http_mocker.requests[0].content) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "overrides",
        [
            {},
            {"functions_runtime_version": "~4", "website_sku": "Standard"},
            {"website_sku": "Dynamic"},
        ],
    )
    async def test_skipped_when_not_dynamic(self, make_orchestrator, http_mocker, overrides):
        orchestrator = make_orchestrator(**overrides)

        await orchestrator.sync_function_triggers("req-6")

        assert http_mocker.requests == []

    @pytest.mark.asyncio
    async def test_missing_host_aborts_before_network(self, make_orchestrator, http_mocker):
        orchestrator = make_orchestrator(http_host=None, **CONSUMPTION)

        with pytest.raises(PreconditionMissingError):
            await orchestrator.sync_function_triggers("req-7")

        assert http_mocker.requests == []

    @pytest.mark.asyncio
    async def test_missing_functions_root_fails_before_network(self, make_orchestrator, http_mocker):
        """No wwwroot means no settriggers call rather than an empty trigger list."""
        orchestrator = make_orchestrator(**CONSUMPTION)

        with pytest.raises(FileNotFoundError):
            await orchestrator.sync_function_triggers("req-7b")

        assert http_mocker.requests == []

    @pytest.mark.asyncio
    async def test_failure_is_logged_and_raised(self, make_orchestrator, http_mocker, caplog):
        http_mocker.register("POST", "/operations/settriggers", 503)
        orchestrator = make_orchestrator(logic_app_url="https://logic.example/x", **CONSUMPTION)
        orchestrator.config.functions_path.mkdir(parents=True)

        with caplog.at_level(logging.INFO, logger="postdeploy"):
            with pytest.raises(httpx.HTTPStatusError):
                await orchestrator.sync_function_triggers("req-8")

        assert any("failed with" in r.getMessage() for r in caplog.records)
        assert http_mocker.requests_to("logic.example") == []

    @pytest.mark.asyncio
    async def test_logic_app_json_is_put(self, make_orchestrator, http_mocker):
        """logicapp.json follows a successful trigger sync."""
        orchestrator = make_orchestrator(
            logic_app_url="https://logic.example/workflows/x?sig=secret", **CONSUMPTION
        )
        orchestrator.config.functions_path.mkdir(parents=True)
        orchestrator.config.logic_app_json_path.write_text('{"definition":{}}')

        await orchestrator.sync_function_triggers("req-9")

        put = http_mocker.requests_to("logic.example")[0]
        assert put.method == "PUT"
        assert put.content == b'{"definition":{}}'
        assert put.headers["x-ms-client-request-id"] == "req-9"

    @pytest.mark.asyncio
    async def test_logic_app_without_json_file(self, make_orchestrator, http_mocker):
        orchestrator = make_orchestrator(logic_app_url="https://logic.example/x")

        await orchestrator.sync_logic_app_json("req-10")

        assert http_mocker.requests == []

    @pytest.mark.asyncio
    async def test_explicit_functions_path(self, make_orchestrator, http_mocker, tmp_path):
        other = tmp_path / "other"
        (other / "job").mkdir(parents=True)
        (other / "job" / "function.json").write_text('{"bindings":[{"type":"queueTrigger"}]}')
        orchestrator = make_orchestrator(**CONSUMPTION)

        await orchestrator.sync_function_triggers("req-11", functions_path=other)

        assert json.loads(http_mocker.requests[0].content) == [
            {"type": "queueTrigger", "functionName": "job"}
        ]


# =============================================================================
# Auto-swap
# =============================================================================

class TestAutoSwap:
    """Auto-swap request and lock."""

    @pytest.mark.asyncio
    async def test_swap_writes_lock(self, make_orchestrator, http_mocker):
        orchestrator = make_orchestrator(swap_slot_name="production")
        assert orchestrator.is_auto_swap_ongoing() is False

        await orchestrator.perform_auto_swap("req-12")

        request = http_mocker.requests[0]
        assert request.url.path == "/operations/autoswap"
        assert request.url.params["slot"] == "production"
        assert request.url.params["operationId"].startswith("AUTOSWAP")
        assert orchestrator.is_auto_swap_ongoing() is True

    @pytest.mark.asyncio
    async def test_failed_swap_leaves_no_lock(self, make_orchestrator, http_mocker):
        http_mocker.register("POST", "/operations/autoswap", 409)
        orchestrator = make_orchestrator(swap_slot_name="production")

        with pytest.raises(httpx.HTTPStatusError):
            await orchestrator.perform_auto_swap("req-13")

        assert not orchestrator.config.auto_swap_lock_path.exists()

    @pytest.mark.asyncio
    async def test_disabled(self, make_orchestrator, http_mocker):
        orchestrator = make_orchestrator()

        await orchestrator.perform_auto_swap("req-14")

        assert orchestrator.is_auto_swap_enabled() is False
        assert http_mocker.requests == []

    def test_lock_ignored_when_disabled(self, make_orchestrator):
        orchestrator = make_orchestrator()
        AutoSwapLock(orchestrator.config.auto_swap_lock_path).write()

        assert orchestrator.is_auto_swap_ongoing() is False


# =============================================================================
# Restart and other control-plane operations
# =============================================================================

class TestRestart:
    """Retried restart requests."""

    @pytest.mark.asyncio
    async def test_retries_until_success(self, make_orchestrator, http_mocker, sleeps):
        http_mocker.register("POST", "/operations/restartsite", 500, 502, 200)
        orchestrator = make_orchestrator()

        await orchestrator.restart_main_site("req-15")

        assert len(http_mocker.requests_to("/operations/restartsite")) == 3
        assert sleeps == [5.0, 5.0]

    @pytest.mark.asyncio
    async def test_gives_up_after_five_attempts(self, make_orchestrator, http_mocker, sleeps, caplog):
        http_mocker.register("POST", "/operations/restartsite", 500)
        orchestrator = make_orchestrator()

        with caplog.at_level(logging.INFO, logger="postdeploy"):
            with pytest.raises(httpx.HTTPStatusError):
                await orchestrator.restart_main_site("req-16")

        assert len(http_mocker.requests) == 5
        assert any("Number of attempts: 5" in r.getMessage() for r in caplog.records)


class TestPackageOperations:
    """Operations used by package-based deployments."""

    @pytest.mark.asyncio
    async def test_remove_all_workers(self, make_orchestrator, http_mocker):
        orchestrator = make_orchestrator()

        await orchestrator.remove_all_workers("mysite.azurewebsites.net", "mysite")

        request = http_mocker.requests[0]
        assert request.method == "GET"
        assert str(request.url).startswith(
            "http://mysite.azurewebsites.net/operations/removeworker/mysite/allStandard?token="
        )
        token = request.url.params["token"]
        assert decrypt_value(token, key_bytes(TEST_KEY_HEX)).startswith("exp=")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "hostname,site_name",
        [
            ("", "mysite"),
            ("my site.azurewebsites.net", "mysite"),
            ("mysite.azurewebsites.net/extra", "mysite"),
            ("mysite.azurewebsites.net:port", "mysite"),
            ("-mysite.azurewebsites.net", "mysite"),
            ("[not-an-ip]", "mysite"),
            ("mysite.azurewebsites.net", "my site"),
            ("mysite.azurewebsites.net", "../other"),
            ("mysite.azurewebsites.net", ""),
        ],
    )
    async def test_remove_all_workers_malformed_url(self, make_orchestrator, http_mocker, hostname, site_name):
        """Bad hostnames or site names are rejected before any request."""
        orchestrator = make_orchestrator()

        with pytest.raises(ValueError, match="Malformed URI is used in RemoveAllWorkers"):
            await orchestrator.remove_all_workers(hostname, site_name)

        assert http_mocker.requests == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "hostname,expected_url",
        [
            ("localhost:7071", "http://localhost:7071/admin/host/synctriggers"),
            ("10.0.0.4", "http://10.0.0.4/admin/host/synctriggers"),
            ("[2001:db8::1]:8080", "http://[2001:db8::1]:8080/admin/host/synctriggers"),
        ],
    )
    async def test_host_sync_accepts_ports_and_addresses(self, make_orchestrator, http_mocker, hostname, expected_url):
        orchestrator = make_orchestrator()

        await orchestrator.perform_function_host_sync_triggers(hostname)

        assert str(http_mocker.requests[0].url) == expected_url

    @pytest.mark.asyncio
    async def test_host_sync_rejects_bad_hostname(self, make_orchestrator, http_mocker):
        orchestrator = make_orchestrator()

        with pytest.raises(ValueError, match="Malformed URI"):
            await orchestrator.perform_function_host_sync_triggers("my site")

        assert http_mocker.requests == []

    @pytest.mark.asyncio
    async def test_update_run_from_package(self, make_orchestrator, http_mocker):
        """The SAS uri travels encrypted."""
        orchestrator = make_orchestrator()
        sas = "https://storage.example/pkgs/app.zip?sv=2020&sig=abc"

        await orchestrator.update_website_run_from_package(sas)

        request = http_mocker.requests[0]
        assert str(request.url).startswith(
            "https://mysite.scm.azurewebsites.net/operations/set-run-from-pkg?run-from-pkg-path="
        )
        encrypted = request.url.params["run-from-pkg-path"]
        assert decrypt_value(encrypted, key_bytes(TEST_KEY_HEX)) == sas

    @pytest.mark.asyncio
    async def test_update_run_from_package_requires_host(self, make_orchestrator, http_mocker):
        orchestrator = make_orchestrator(http_host=None)

        with pytest.raises(PreconditionMissingError):
            await orchestrator.update_website_run_from_package("https://storage.example/a.zip")

        assert http_mocker.requests == []

    @pytest.mark.asyncio
    async def test_function_host_sync_triggers(self, make_orchestrator, http_mocker, caplog):
        orchestrator = make_orchestrator()

        with caplog.at_level(logging.INFO, logger="postdeploy"):
            await orchestrator.perform_function_host_sync_triggers("mysite.azurewebsites.net")

        assert str(http_mocker.requests[0].url) == "http://mysite.azurewebsites.net/admin/host/synctriggers"
        assert "FunctionHostSyncTrigger, statusCode = 200" in [r.getMessage() for r in caplog.records]

    @pytest.mark.asyncio
    async def test_update_package_name(self, make_orchestrator):
        orchestrator = make_orchestrator()

        await orchestrator.update_package_name("20240101-app.zip")

        assert orchestrator.config.package_name_path.read_text() == "20240101-app.zip"


# =============================================================================
# Pending operation tracking
# =============================================================================

@pytest.mark.asyncio
async def test_track_pending_operation(make_config, make_client):
    config = make_config(instance_id="abc123")
    orchestrator = PostDeploymentOrchestrator(
        config,
        control_plane=make_client(config),
        pending_marker=PendingOperationMarker(
            config.pending_operation_marker_path, config.is_managed_environment
        ),
    )
    config.pending_operation_marker_path.parent.mkdir(parents=True)

    tracked = await orchestrator.track_pending_operation(asyncio.sleep(0.05, result="deployed"))

    assert tracked.done()
    assert await tracked == "deployed"
    assert not config.pending_operation_marker_path.exists()


@pytest.mark.asyncio
async def test_tracked_operation_runs_outside_managed_environment(make_orchestrator):
    """Without an instance id there is no marker, but the operation still runs."""
    orchestrator = make_orchestrator()
    ran = []

    async def operation():
        ran.append(1)

    tracked = await orchestrator.track_pending_operation(operation())
    await tracked

    assert ran == [1]
    assert not orchestrator.config.pending_operation_marker_path.exists()
