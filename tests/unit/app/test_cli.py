"""Unit tests for the command-line front end."""

import json
from unittest.mock import AsyncMock

import pytest

from tcc_manager.app import main as cli_main
from tcc_manager.app.engine import Engine
from tcc_manager.core.config_manager import EngineSettings
from tcc_manager.core.models import AppRecord, PermissionState, ServiceKind
from tcc_manager.sync.orchestrator import ToggleOutcome, ToggleResult
from tests.infrastructure.mocks.process_mocks import MockPool

ZOOM = "/Applications/Zoom.app"
SLACK = "/Applications/Slack.app"


@pytest.fixture
def cli_harness(harness_factory, monkeypatch):
    """Route main() to an engine built from in-memory collaborators."""
    h = harness_factory({ZOOM: "us.zoom.xos", SLACK: "com.tinyspeck.slackmacgap"})
    engine = Engine(
        EngineSettings(),
        MockPool(),
        h.discovery,
        h.resolver,
        h.orchestrator.store,
        h.orchestrator.mutator,
        h.cache,
        h.orchestrator,
    )
    monkeypatch.setattr(cli_main, "build_engine", lambda settings, locations=None: engine)
    monkeypatch.setattr(cli_main, "setup_logging_from_args", lambda args: None)
    return h


class TestParseArgs:

    def test_service_is_parsed(self):
        args = cli_main.parse_args(["grant", "Zoom", "Camera"])

        assert args.command == "grant"
        assert args.app == "Zoom"
        assert args.service is ServiceKind.CAMERA

    def test_invalid_service_exits(self):
        with pytest.raises(SystemExit) as excinfo:
            cli_main.parse_args(["revoke", "Zoom", "screen"])

        assert excinfo.value.code == 2

    def test_command_required(self):
        with pytest.raises(SystemExit):
            cli_main.parse_args([])

    def test_common_options(self, tmp_path):
        args = cli_main.parse_args([
            "--log-level", "debug", "--log-file", str(tmp_path / "x.log"), "--config", str(tmp_path / "c.txt"), "refresh",
        ])

        assert args.log_level == "debug"
        assert args.log_file == tmp_path / "x.log"
        assert args.config == tmp_path / "c.txt"


class TestFormatting:

    def test_format_table(self):
        record = AppRecord.from_path(ZOOM)
        record.identifier = "us.zoom.xos"
        record.permissions = PermissionState(camera=True)

        lines = cli_main.format_table([record]).splitlines()

        assert lines[0].split() == ["CAM", "MIC", "NAME", "IDENTIFIER"]
        assert lines[1].split() == ["yes", "-", "Zoom", "us.zoom.xos"]

    def test_describe_toggle(self):
        settled = ToggleResult(ZOOM, ServiceKind.CAMERA, True, ToggleOutcome.SETTLED, granted=True)
        reconciled = ToggleResult(ZOOM, ServiceKind.MICROPHONE, True, ToggleOutcome.RECONCILED, granted=False)
        failed = ToggleResult(ZOOM, ServiceKind.CAMERA, False, ToggleOutcome.FAILED, error="Failed to revoke camera permission: x")

        assert cli_main.describe_toggle(settled) == f"camera granted for {ZOOM}"
        assert "not confirmed" in cli_main.describe_toggle(reconciled)
        assert cli_main.describe_toggle(failed) == "Failed to revoke camera permission: x"


class TestCommands:
    """Test main() end to end against in-memory collaborators."""

    @pytest.mark.asyncio
    async def test_list(self, cli_harness, capsys):
        cli_harness.grant_row("us.zoom.xos", ServiceKind.MICROPHONE)

        code = await cli_main.main(["list"])

        out = capsys.readouterr().out
        assert code == 0
        assert "Zoom" in out and "Slack" in out
        assert "2 applications" in out

    @pytest.mark.asyncio
    async def test_list_json_with_search(self, cli_harness, capsys):
        cli_harness.grant_row("us.zoom.xos", ServiceKind.MICROPHONE)

        code = await cli_main.main(["list", "--json", "--search", "zoom"])

        payload = json.loads(capsys.readouterr().out)
        assert code == 0
        assert payload == [{
            "id": ZOOM,
            "path": ZOOM,
            "name": "Zoom",
            "identifier": "us.zoom.xos",
            "permissions": {"camera": False, "microphone": True},
        }]

    @pytest.mark.asyncio
    async def test_grant_by_name(self, cli_harness, capsys):
        code = await cli_main.main(["grant", "zoom", "camera"])

        assert code == 0
        assert f"camera granted for {ZOOM}" in capsys.readouterr().out
        assert cli_harness.writer.applied == [("us.zoom.xos", ServiceKind.CAMERA, True)]
        cached = {app.path: app for app in await cli_harness.cache.load()}
        assert cached[ZOOM].permissions.camera is True

    @pytest.mark.asyncio
    async def test_grant_by_bundle_file_name(self, cli_harness, capsys):
        code = await cli_main.main(["grant", "Zoom.app", "camera"])

        assert code == 0
        assert f"camera granted for {ZOOM}" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_revoke_by_path(self, cli_harness, capsys):
        cli_harness.grant_row("com.tinyspeck.slackmacgap", ServiceKind.MICROPHONE)

        code = await cli_main.main(["revoke", SLACK, "microphone"])

        assert code == 0
        assert f"microphone revoked for {SLACK}" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_unknown_app(self, cli_harness, capsys):
        code = await cli_main.main(["grant", "Teams", "camera"])

        assert code == 2
        assert "Unknown application: Teams" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_failed_grant(self, cli_harness, capsys):
        cli_harness.writer.error = "tccplus: not permitted"

        code = await cli_main.main(["grant", "Zoom", "camera"])

        assert code == 1
        assert "Failed to grant camera permission: tccplus: not permitted" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_refresh(self, cli_harness, capsys):
        code = await cli_main.main(["refresh"])

        assert code == 0
        assert "Refreshed 2 applications" in capsys.readouterr().out
        assert cli_harness.discovery.calls == 1

    @pytest.mark.asyncio
    async def test_unsaved_cache_is_reported(self, cli_harness, capsys, monkeypatch):
        monkeypatch.setattr(cli_harness.cache, "save", AsyncMock(return_value=False))

        listed = await cli_main.main(["list"])
        list_err = capsys.readouterr().err
        refreshed = await cli_main.main(["refresh"])
        refresh_err = capsys.readouterr().err

        assert listed == 0
        assert f"warning: Could not save the app list to {cli_harness.cache.path}" in list_err
        assert refreshed == 1
        assert "warning: Could not save the app list" in refresh_err

    @pytest.mark.asyncio
    async def test_unsaved_cache_after_grant_is_reported(self, cli_harness, capsys, monkeypatch):
        await cli_harness.orchestrator.start()
        monkeypatch.setattr(cli_harness.cache, "save", AsyncMock(return_value=False))

        code = await cli_main.main(["grant", "Zoom", "camera"])
        captured = capsys.readouterr()

        assert code == 0
        assert f"camera granted for {ZOOM}" in captured.out
        assert "warning: Could not save the app list" in captured.err

    @pytest.mark.asyncio
    async def test_cache_path_and_clear(self, cli_harness, capsys):
        await cli_harness.orchestrator.start()
        assert cli_harness.cache.path.exists()

        assert await cli_main.main(["cache-path"]) == 0
        assert capsys.readouterr().out.strip() == str(cli_harness.cache.path)

        assert await cli_main.main(["clear-cache"]) == 0
        assert not cli_harness.cache.path.exists()

    @pytest.mark.asyncio
    async def test_check_access_reports_missing_store(self, cli_harness, capsys):
        code = await cli_main.main(["check-access"])

        assert code == 1
        assert "Authorization store not found" in capsys.readouterr().err


class TestRunWrapper:

    def test_run_returns_exit_code(self, cli_harness, capsys):
        import tcc_manager

        assert tcc_manager.run(["cache-path"]) == 0
        assert capsys.readouterr().out.strip() == str(cli_harness.cache.path)
        assert tcc_manager.__version__


class TestNewlyInstalledApp:

    @pytest.mark.asyncio
    async def test_bundle_path_missing_from_cache_triggers_refresh(self, cli_harness, app_bundle, capsys):
        await cli_harness.orchestrator.start()
        bundle = str(app_bundle("Late"))
        cli_harness.discovery.paths.append(bundle)
        cli_harness.resolver.identifiers[bundle] = "com.example.late"

        code = await cli_main.main(["grant", bundle, "microphone"])

        assert code == 0
        assert f"microphone granted for {bundle}" in capsys.readouterr().out
        assert cli_harness.discovery.calls == 2
