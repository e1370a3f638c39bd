"""Tests for the CLI entry point."""

import os
import signal
from unittest.mock import MagicMock

import pytest
from click.testing import CliRunner

from gerritci_cli.cli import main
from gerritci_core.checkout import RefNotFoundError
from gerritci_core.gerrit.errors import GerritError
from gerritci_core.models import ChangeFilter

WATCH_ARGS = ["watch", "review.example.com", "proj", "main", "verify"]


@pytest.fixture
def config_file(tmp_path):
    cfg = tmp_path / ".gerrit-ci.yml"
    cfg.write_text(f"workdir: {tmp_path / 'work'}\nconnect_delay: 0\n")
    return cfg


def _patch_watch(mocker, connection=("gerrit.example.com", 29418, "ci")):
    """Patch everything watch touches outside the process."""
    mocker.patch("shutil.which", return_value="/usr/local/bin/verify")
    resolve = mocker.patch("gerritci_cli.commands.watch.resolve_connection", return_value=connection)
    ssh_cls = mocker.patch("gerritci_cli.commands.watch.GerritSSH")
    ssh_cls.return_value.version.return_value = "3.9.1"
    dispatcher_cls = mocker.patch("gerritci_cli.commands.watch.Dispatcher")
    return resolve, ssh_cls, dispatcher_cls


class TestWatchValidation:
    def test_missing_program(self, config_file):
        result = CliRunner().invoke(main, ["--config", str(config_file), "watch", "review.example.com", "proj", "main"])
        assert result.exit_code != 0
        assert "PROGRAM" in result.output

    def test_missing_instance(self, config_file):
        result = CliRunner().invoke(main, ["--config", str(config_file), "watch"])
        assert result.exit_code != 0
        assert "INSTANCE" in result.output

    def test_unknown_program(self, config_file, mocker):
        mocker.patch("shutil.which", return_value=None)
        result = CliRunner().invoke(main, ["--config", str(config_file), *WATCH_ARGS])
        assert result.exit_code == 2
        assert "not an executable" in result.output

    def test_unreachable_gerrit(self, config_file, mocker):
        mocker.patch("shutil.which", return_value="/usr/local/bin/verify")
        mocker.patch("gerritci_cli.commands.watch.resolve_connection", side_effect=GerritError("no route to host"))
        dispatcher_cls = mocker.patch("gerritci_cli.commands.watch.Dispatcher")

        result = CliRunner().invoke(main, ["--config", str(config_file), *WATCH_ARGS])

        assert result.exit_code == 1
        assert "no route to host" in result.output
        dispatcher_cls.assert_not_called()

    def test_ssh_check_failure(self, config_file, mocker):
        _, ssh_cls, dispatcher_cls = _patch_watch(mocker)
        ssh_cls.return_value.version.side_effect = GerritError("Permission denied (publickey)")

        result = CliRunner().invoke(main, ["--config", str(config_file), *WATCH_ARGS])

        assert result.exit_code == 1
        assert "Permission denied" in result.output
        dispatcher_cls.assert_not_called()


class TestWatchRun:
    def test_builds_dispatcher_and_runs(self, config_file, tmp_path, mocker):
        _, ssh_cls, dispatcher_cls = _patch_watch(mocker)

        result = CliRunner().invoke(main, ["--config", str(config_file), *WATCH_ARGS])

        assert result.exit_code == 0, result.output
        ssh_cls.assert_called_once_with("gerrit.example.com", 29418, "ci")
        args = dispatcher_cls.call_args.args
        assert args[2] == ChangeFilter(project="proj", branch="main", service_account="ci")
        assert args[3].root == tmp_path / "work" / "proj" / "main"
        assert args[4].program == "/usr/local/bin/verify"
        assert dispatcher_cls.call_args.kwargs["poll_workers"] == 1
        assert dispatcher_cls.call_args.kwargs["connect_delay"] == 0
        dispatcher_cls.return_value.run_forever.assert_called_once()
        assert "3.9.1" in result.output

    def test_work_root_removed_on_exit(self, config_file, tmp_path, mocker):
        _, _, dispatcher_cls = _patch_watch(mocker)
        seen = []
        dispatcher_cls.return_value.run_forever.side_effect = lambda: seen.append(
            (tmp_path / "work" / "proj" / "main").is_dir()
        )

        CliRunner().invoke(main, ["--config", str(config_file), *WATCH_ARGS])

        assert seen == [True]
        assert not (tmp_path / "work" / "proj" / "main").exists()

    def test_interrupt_shuts_down_cleanly(self, config_file, tmp_path, mocker):
        _, _, dispatcher_cls = _patch_watch(mocker)
        dispatcher_cls.return_value.run_forever.side_effect = KeyboardInterrupt

        result = CliRunner().invoke(main, ["--config", str(config_file), *WATCH_ARGS])

        assert "Interrupted" in result.output
        assert not (tmp_path / "work" / "proj" / "main").exists()

    def test_refuses_second_instance(self, config_file, tmp_path, mocker):
        _, _, dispatcher_cls = _patch_watch(mocker)
        (tmp_path / "work" / "proj" / "main").mkdir(parents=True)

        result = CliRunner().invoke(main, ["--config", str(config_file), *WATCH_ARGS])

        assert result.exit_code == 1
        assert "already exists" in result.output
        dispatcher_cls.assert_not_called()
        # The other instance's directory is left alone.
        assert (tmp_path / "work" / "proj" / "main").is_dir()

    @pytest.mark.parametrize("signum", [signal.SIGTERM, signal.SIGINT])
    def test_signal_stops_dispatcher_and_removes_root(self, config_file, tmp_path, mocker, signum):
        _, _, dispatcher_cls = _patch_watch(mocker)
        dispatcher = dispatcher_cls.return_value
        dispatcher.run_forever.side_effect = lambda: os.kill(os.getpid(), signum)
        previous = signal.getsignal(signum)

        result = CliRunner().invoke(main, ["--config", str(config_file), *WATCH_ARGS])

        assert result.exit_code == 0, result.output
        assert "Interrupted" in result.output
        dispatcher.stop.assert_called_once()
        assert not (tmp_path / "work" / "proj" / "main").exists()
        assert signal.getsignal(signum) == previous

    def test_ssh_options_override_config(self, tmp_path, mocker):
        cfg = tmp_path / ".gerrit-ci.yml"
        cfg.write_text(f"workdir: {tmp_path / 'work'}\nssh_host: from-file\nssh_user: file-user\nssh_port: 29418\n")
        resolve, _, _ = _patch_watch(mocker)

        CliRunner().invoke(main, ["--config", str(cfg), "watch", "-s", "gerrit", "-u", "bot", *WATCH_ARGS[1:]])

        config = resolve.call_args.args[0]
        assert (config["ssh_host"], config["ssh_port"], config["ssh_user"]) == ("gerrit", 29418, "bot")

    def test_ssh_port_option(self, config_file, mocker):
        resolve, _, _ = _patch_watch(mocker)

        CliRunner().invoke(main, ["--config", str(config_file), "watch", "-p", "2222", *WATCH_ARGS[1:]])

        assert resolve.call_args.args[0]["ssh_port"] == 2222

    def test_jobs_option(self, config_file, mocker):
        _, _, dispatcher_cls = _patch_watch(mocker)

        CliRunner().invoke(main, ["--config", str(config_file), "watch", "-j", "3", *WATCH_ARGS[1:]])

        assert dispatcher_cls.call_args.kwargs["max_workers"] == 3

    def test_jobs_must_be_positive(self, config_file, mocker):
        _patch_watch(mocker)
        result = CliRunner().invoke(main, ["--config", str(config_file), "watch", "-j", "0", *WATCH_ARGS[1:]])
        assert result.exit_code == 2


# ---------------------------------------------------------------------------
# checkout
# ---------------------------------------------------------------------------


class TestCheckout:
    def test_missing_project(self, config_file):
        result = CliRunner().invoke(main, ["--config", str(config_file), "checkout", "-g", "gerrit", "1042"])
        assert result.exit_code == 2
        assert "PROJECT" in result.output

    def test_defaults_from_config(self, tmp_path, mocker):
        cfg = tmp_path / ".gerrit-ci.yml"
        cfg.write_text("instance: review.example.com\nproject: proj\nbranch: main\n")
        run_checkout = mocker.patch("gerritci_cli.commands.checkout.checkout", return_value="refs/changes/42/1042/1")

        result = CliRunner().invoke(main, ["--config", str(cfg), "checkout", "1042"])

        assert result.exit_code == 0, result.output
        rest, target, project, branch, dest = run_checkout.call_args.args
        assert rest.instance == "review.example.com"
        assert (target, project, branch, dest) == ("1042", "proj", "main", ".")
        assert "refs/changes/42/1042/1" in result.output

    def test_options_override_config(self, tmp_path, mocker):
        cfg = tmp_path / ".gerrit-ci.yml"
        cfg.write_text("instance: review.example.com\nproject: proj\nbranch: main\n")
        run_checkout = mocker.patch("gerritci_cli.commands.checkout.checkout", return_value="refs/changes/42/1042/1")

        CliRunner().invoke(main, ["--config", str(cfg), "checkout", "-b", "v4", "1042"])

        _, _, project, branch, _ = run_checkout.call_args.args
        assert (project, branch) == ("proj", "v4")

    def test_unresolved_target_exits_noinput(self, config_file, mocker):
        mocker.patch(
            "gerritci_cli.commands.checkout.checkout",
            side_effect=RefNotFoundError("'1042' resolves to an empty refname"),
        )

        result = CliRunner().invoke(
            main, ["--config", str(config_file), "checkout", "-g", "gerrit", "-p", "proj", "-b", "main", "1042"]
        )

        assert result.exit_code == 66

    def test_unreachable_gerrit_exits_tempfail(self, config_file, mocker):
        mocker.patch("gerritci_cli.commands.checkout.checkout", side_effect=GerritError("timeout"))

        result = CliRunner().invoke(
            main, ["--config", str(config_file), "checkout", "-g", "gerrit", "-p", "proj", "-b", "main", "1042"]
        )

        assert result.exit_code == 75


def test_help_lists_commands():
    result = CliRunner().invoke(main, ["--help"])
    assert result.exit_code == 0
    assert "watch" in result.output
    assert "checkout" in result.output


def test_verbose_flag_accepted(config_file, mocker):
    mocker.patch("gerritci_cli.commands.checkout.checkout", return_value=MagicMock())
    result = CliRunner().invoke(
        main, ["--config", str(config_file), "-v", "checkout", "-g", "gerrit", "-p", "proj", "-b", "main", "1042"]
    )
    assert result.exit_code == 0
