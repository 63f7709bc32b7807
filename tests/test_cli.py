"""
Tests for argument parsing and process exit codes.
"""
import builtins
import json

import pytest

from archsetup.cli import EXIT_INTERRUPTED, main, parse_arguments
from archsetup.utils.format import parse_size_spec
from archsetup.utils.validation import SystemCatalog


def _answers(monkeypatch, *answers):
    remaining = list(answers)

    def fake_input(prompt=""):
        if not remaining:
            raise EOFError
        return remaining.pop(0)

    monkeypatch.setattr(builtins, "input", fake_input)


@pytest.fixture
def host_catalog(monkeypatch, zoneinfo_dir, locale_gen):
    """Point the catalog built by main() at the test zoneinfo and locale.gen."""
    monkeypatch.setattr(
        "archsetup.cli.SystemCatalog",
        lambda cmd_runner: SystemCatalog(cmd_runner, str(zoneinfo_dir), str(locale_gen))
    )


class TestArguments:
    """Command-line options."""

    def test_defaults(self):
        args = parse_arguments([])
        assert args.target == "/mnt"
        assert args.efi_size == 1024
        assert args.min_root_size == 20
        assert not args.simulate

    @pytest.mark.parametrize("size", ["100", "8192"])
    def test_efi_size_bounds(self, size):
        with pytest.raises(SystemExit):
            parse_arguments(["--efi-size", size])

    def test_efi_size_accepted(self):
        assert parse_arguments(["--efi-size", "512"]).efi_size == 512

    @pytest.mark.parametrize("spec,expected", [
        ("500G", 500 * 1024 ** 3),
        ("1T", 1024 ** 4),
        ("512MiB", 512 * 1024 ** 2),
        ("100GB", 100 * 1000 ** 3),
    ])
    def test_size_spec(self, spec, expected):
        assert parse_size_spec(spec) == expected

    def test_bad_size_spec(self):
        with pytest.raises(ValueError):
            parse_size_spec("lots")


class TestExitCodes:
    """Exit codes of whole sessions in simulation mode."""

    def test_explicit_exit(self, monkeypatch):
        _answers(monkeypatch, "q")
        assert main(["--simulate", "--no-color"]) == 0

    def test_closed_input(self, monkeypatch):
        _answers(monkeypatch)
        assert main(["--simulate", "--no-color"]) == 1

    def test_interrupt_outside_a_run(self, monkeypatch):
        def interrupted(prompt=""):
            raise KeyboardInterrupt

        monkeypatch.setattr(builtins, "input", interrupted)
        assert main(["--simulate", "--no-color"]) == EXIT_INTERRUPTED

    def test_start_without_disk(self):
        assert main(["--simulate", "--no-color", "--start"]) == 1

    def test_bad_sim_disk_size(self):
        assert main(["--simulate", "--sim-disk-size", "huge"]) == 1

    def test_preset_with_unknown_field(self, tmp_path):
        preset = tmp_path / "preset.json"
        preset.write_text(json.dumps({"colour": "blue"}))
        assert main(["--simulate", "--no-color", "--preset", str(preset)]) == 1

    def test_start_refuses_rejected_preset_values(self, tmp_path):
        preset = tmp_path / "preset.json"
        preset.write_text(json.dumps({"disk": "/dev/sda", "hostname": "bad host!"}))
        assert main(["--simulate", "--no-color", "--preset", str(preset), "--start"]) == 1

    def test_start_declined(self, monkeypatch, host_catalog, tmp_path, capsys):
        preset = tmp_path / "preset.json"
        preset.write_text(json.dumps({"disk": "/dev/sda", "keymap": "us"}))
        _answers(monkeypatch, "no")
        assert main(["--simulate", "--no-color", "--preset", str(preset), "--start"]) == 0
        assert "parted" not in capsys.readouterr().out

    def test_start_confirmed(self, monkeypatch, host_catalog, tmp_path, capsys):
        preset = tmp_path / "preset.json"
        preset.write_text(json.dumps({"disk": "/dev/sda", "swap_size_gib": 4, "root_password": "pw"}))
        _answers(monkeypatch, "YES")
        code = main(["--simulate", "--no-color", "--preset", str(preset), "--start",
                     "--sim-disk-size", "100G", "--target", str(tmp_path / "mnt")])
        assert code == 0
        out = capsys.readouterr().out
        assert "SIMULATION COMPLETE - NO CHANGES WERE MADE" in out
        assert "pacstrap -K" in out
