"""Unit tests for PlatformController."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from fleet_agent.models.state import LifecycleState
from fleet_agent.services.platform import PlatformController


def _mock_process(returncode=0, stderr=b""):
    process = AsyncMock()
    process.communicate = AsyncMock(return_value=(b"", stderr))
    process.returncode = returncode
    return process


@pytest.mark.unit
class TestUptime:

    def test_reads_proc_uptime(self, tmp_path):
        uptime_file = tmp_path / "uptime"
        uptime_file.write_text("12345.67 54321.00\n")

        platform = PlatformController(uptime_path=uptime_file)

        assert platform.uptime() == 12345.67

    def test_undetermined_uptime_is_zero(self, tmp_path):
        platform = PlatformController(uptime_path=tmp_path / "missing")

        assert platform.uptime() == 0.0


@pytest.mark.unit
class TestMotd:

    @pytest.fixture
    def motd_dir(self, tmp_path):
        etc = tmp_path / "etc"
        etc.mkdir()
        (etc / "motd").write_text("booting\n")
        (etc / "motd-complete").write_text("complete\n")
        (etc / "motd-failed").write_text("failed\n")
        return etc

    @pytest.fixture
    def platform(self, motd_dir, tmp_path):
        return PlatformController(motd_dir=str(motd_dir), motd_path=tmp_path / "motd")

    @pytest.mark.parametrize(
        "state,expected",
        [
            (LifecycleState.OPERATIONAL, "complete\n"),
            (LifecycleState.STRANDED, "failed\n"),
            (LifecycleState.BOOTING, "booting\n"),
            (LifecycleState.DECOMMISSIONING, "booting\n"),
        ],
    )
    def test_copies_template(self, platform, tmp_path, state, expected):
        with patch("fleet_agent.services.platform.sys.platform", "linux"):
            platform.update_motd(state)

        assert (tmp_path / "motd").read_text() == expected

    @pytest.mark.asyncio
    async def test_broadcasts_on_success(self, platform):
        process = _mock_process()

        with patch("fleet_agent.services.platform.sys.platform", "linux"), \
                patch("asyncio.create_subprocess_exec", return_value=process) as mock_exec:
            platform.update_motd(LifecycleState.OPERATIONAL)
            await asyncio.gather(*platform._tasks)

        assert mock_exec.call_args[0] == ("wall",)
        assert b"complete" in process.communicate.call_args[0][0]

    @pytest.mark.asyncio
    async def test_broadcast_does_not_block(self, platform, tmp_path):
        released = asyncio.Event()
        process = _mock_process()

        async def communicate(data):
            await released.wait()
            return b"", b""

        process.communicate = communicate

        with patch("fleet_agent.services.platform.sys.platform", "linux"), \
                patch("asyncio.create_subprocess_exec", return_value=process):
            platform.update_motd(LifecycleState.OPERATIONAL)

            assert (tmp_path / "motd").read_text() == "complete\n"
            assert len(platform._tasks) == 1
            assert not any(t.done() for t in platform._tasks)

            released.set()
            await asyncio.gather(*platform._tasks)

    @pytest.mark.asyncio
    async def test_broadcast_timeout_kills_wall(self, platform):
        process = _mock_process()

        async def hang(data):
            await asyncio.sleep(1)

        process.communicate = hang
        process.kill = MagicMock(side_effect=ProcessLookupError)
        platform.WALL_TIMEOUT = 0.01

        with patch("fleet_agent.services.platform.sys.platform", "linux"), \
                patch("asyncio.create_subprocess_exec", return_value=process):
            platform.update_motd(LifecycleState.STRANDED)
            await asyncio.gather(*platform._tasks)

        process.kill.assert_called_once()

    @pytest.mark.asyncio
    async def test_failures_are_swallowed(self, tmp_path):
        platform = PlatformController(motd_dir=str(tmp_path / "missing"), motd_path=tmp_path / "motd")

        with patch("fleet_agent.services.platform.sys.platform", "linux"), \
                patch("asyncio.create_subprocess_exec", side_effect=OSError("no wall")):
            platform.update_motd(LifecycleState.STRANDED)
            await asyncio.gather(*platform._tasks)

    def test_no_broadcast_outside_event_loop(self, platform):
        with patch("fleet_agent.services.platform.sys.platform", "linux"), \
                patch("asyncio.create_subprocess_exec") as mock_exec:
            platform.update_motd(LifecycleState.OPERATIONAL)

        mock_exec.assert_not_called()
        assert platform._tasks == set()

    def test_skipped_without_motd_dir(self, tmp_path):
        platform = PlatformController(motd_path=tmp_path / "motd")

        with patch("fleet_agent.services.platform.sys.platform", "linux"):
            platform.update_motd(LifecycleState.OPERATIONAL)

        assert not (tmp_path / "motd").exists()


@pytest.mark.unit
class TestCommands:

    @pytest.mark.asyncio
    async def test_run_command_failure_raises(self):
        platform = PlatformController()

        with patch("asyncio.create_subprocess_shell", return_value=_mock_process(1, b"denied")):
            with pytest.raises(RuntimeError, match="denied"):
                await platform.run_command("shutdown -h now")

    @pytest.mark.asyncio
    async def test_request_shutdown_runs_once(self):
        platform = PlatformController(shutdown_command="poweroff")

        with patch("asyncio.create_subprocess_shell", return_value=_mock_process()) as mock_shell:
            first = platform.request_shutdown()
            second = platform.request_shutdown()
            await first

        assert second is None
        mock_shell.assert_called_once()
        assert mock_shell.call_args[0][0] == "poweroff"

    @pytest.mark.asyncio
    async def test_shutdown_failure_logged(self, caplog):
        platform = PlatformController()

        with patch("asyncio.create_subprocess_shell", return_value=_mock_process(1, b"nope")):
            await platform.shutdown()

        assert "Shutdown failed" in caplog.text

    @pytest.mark.asyncio
    async def test_request_reenroll(self):
        platform = PlatformController(reenroll_command="rs_reenroll")

        with patch("asyncio.create_subprocess_shell", return_value=_mock_process()) as mock_shell:
            await platform.request_reenroll()

        assert mock_shell.call_args[0][0] == "rs_reenroll"
