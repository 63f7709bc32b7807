"""
Tests for filesystem creation, mounting and the files written into the new root.
"""
import logging
from pathlib import Path

import pytest

from archsetup.config.fstab import generate_fstab
from archsetup.config.system import (
    configure_system, locale_gen_expression, password_input, render_hosts, useradd_command
)
from archsetup.core.bootstrap import build_package_list
from archsetup.core.exceptions import FilesystemError, FstabError, MountError, SystemConfigError
from archsetup.core.filesystem import create_filesystems, mkfs_command
from archsetup.core.mount import MountTracker, mount_filesystems, release_mounts
from archsetup.core.partition import map_partitions, plan_partitions
from archsetup.core.settings import InstallConfig

PARTITIONS = {"EFI": "/dev/sda1", "ROOT": "/dev/sda2", "SWAP": "/dev/sda3", "HOME": "/dev/sda4"}


# -----------------------------------------------------------------------
# Filesystems
# -----------------------------------------------------------------------
class TestFilesystems:
    """mkfs commands per role."""

    @pytest.mark.parametrize("fs,expected", [
        ("vfat", ["mkfs.fat", "-F32", "-n", "EFI", "/dev/sda1"]),
        ("swap", ["mkswap", "-L", "EFI", "/dev/sda1"]),
        ("ext4", ["mkfs.ext4", "-F", "-L", "EFI", "/dev/sda1"]),
        ("btrfs", ["mkfs.btrfs", "-f", "-L", "EFI", "/dev/sda1"]),
        ("xfs", ["mkfs.xfs", "-f", "-L", "EFI", "/dev/sda1"]),
    ])
    def test_mkfs_command(self, fs, expected):
        assert mkfs_command(fs, "/dev/sda1", "EFI") == expected

    def test_unsupported_filesystem(self):
        with pytest.raises(FilesystemError):
            mkfs_command("ntfs", "/dev/sda1", "data")

    def test_every_partition_formatted(self, runner):
        extents = plan_partitions(102400, 1024, 20, 2, filesystem="xfs")
        create_filesystems(map_partitions("/dev/sda", extents), extents, runner)
        assert [record["command"][0] for record in runner.commands_run] == ["mkfs.fat", "mkfs.xfs", "mkswap", "mkfs.xfs"]

    def test_failure_stops_at_first_device(self, failing_runner):
        runner = failing_runner({"mkfs.ext4"})
        extents = plan_partitions(102400, 1024, 20, 2)
        with pytest.raises(FilesystemError, match="/dev/sda2"):
            create_filesystems(map_partitions("/dev/sda", extents), extents, runner)
        assert runner.commands_named("mkswap") == []


# -----------------------------------------------------------------------
# Mounts
# -----------------------------------------------------------------------
class TestMounts:
    """Mounting records everything it activates."""

    def test_tracker_records_mounts_and_swap(self, runner):
        tracker = MountTracker()
        mount_filesystems(PARTITIONS, "/mnt", runner, tracker)
        assert [str(path) for path in tracker.mounted] == ["/mnt", "/mnt/boot", "/mnt/home"]
        assert tracker.swaps == ["/dev/sda3"]
        assert runner.commands_named("mount")[1] == ["mount", "-o", "defaults,umask=0077", "/dev/sda1", "/mnt/boot"]

    def test_failed_mount_keeps_earlier_ones_tracked(self, failing_runner):
        runner = failing_runner({"swapon"})
        tracker = MountTracker()
        with pytest.raises(MountError):
            mount_filesystems(PARTITIONS, "/mnt", runner, tracker)
        assert len(tracker.mounted) == 3
        assert tracker.swaps == []

    def test_release_order(self, runner):
        tracker = MountTracker()
        mount_filesystems(PARTITIONS, "/mnt", runner, tracker)
        assert release_mounts("/mnt", runner, tracker) == []
        released = [
            record["command"] for record in runner.commands_run
            if record["command"][0] in ("swapoff", "umount")
        ]
        assert released == [
            ["swapoff", "/dev/sda3"],
            ["umount", "/mnt/home"],
            ["umount", "/mnt/boot"],
            ["umount", "/mnt"],
        ]
        assert not tracker.active

    def test_release_never_raises(self, failing_runner):
        runner = failing_runner({"swapoff", "umount"})
        tracker = MountTracker(mounted=[Path("/mnt"), Path("/mnt/boot")], swaps=["/dev/sda3"])
        failures = release_mounts("/mnt", runner, tracker)
        assert any(failure.startswith("swapoff") for failure in failures)
        assert any(failure.startswith("umount") for failure in failures)
        assert ["umount", "-R", "/mnt"] in runner.commands_named("umount")
        assert not tracker.active


# -----------------------------------------------------------------------
# Base system and mount table
# -----------------------------------------------------------------------
class TestBootstrap:
    """Package list and mount table."""

    def test_package_list(self):
        packages = build_package_list("btrfs", "amd-ucode", None)
        assert packages[:6] == ["base", "base-devel", "linux", "linux-firmware", "networkmanager", "sudo"]
        assert packages[6:] == ["btrfs-progs", "amd-ucode"]

    def test_package_list_ext4_needs_nothing_extra(self):
        assert len(build_package_list("ext4", None, None)) == 6

    def test_fstab_appended(self, runner):
        path = generate_fstab("/mnt", runner)
        assert str(path) == "/mnt/etc/fstab"
        assert runner.commands_named("genfstab") == [["genfstab", "-U", "/mnt"]]

    def test_fstab_failure(self, failing_runner):
        with pytest.raises(FstabError):
            generate_fstab("/mnt", failing_runner({"genfstab"}))


# -----------------------------------------------------------------------
# System configuration
# -----------------------------------------------------------------------
class TestSystemConfiguration:
    """Settings applied in the new root."""

    def test_helpers(self):
        assert locale_gen_expression("en_US.UTF-8") == r"s/^#\s*en_US\.UTF-8 /en_US.UTF-8 /"
        assert "127.0.1.1\tbox.localdomain\tbox" in render_hosts("box")
        assert useradd_command("alice", True) == ["useradd", "-m", "-s", "/bin/bash", "-G", "wheel", "alice"]
        assert useradd_command("alice", False) == ["useradd", "-m", "-s", "/bin/bash", "alice"]

    def test_password_input(self):
        config = InstallConfig(username="alice", root_password="r", user_password="u")
        assert password_input(config) == "root:r\nalice:u\n"
        assert password_input(InstallConfig()) is None

    def test_order_of_settings(self, runner):
        config = InstallConfig(username="alice", root_password="r", user_password="u", timezone="Europe/London")
        configure_system(config, "/mnt", runner)
        in_root = [cmd[2] for cmd in runner.commands_named("arch-chroot")]
        assert in_root == ["ln", "hwclock", "sed", "locale-gen", "useradd", "chpasswd", "systemctl"]
        assert runner.commands_named("arch-chroot")[0][-2] == "/usr/share/zoneinfo/Europe/London"

    def test_no_user(self, runner):
        configure_system(InstallConfig(), "/mnt", runner)
        in_root = [cmd[2] for cmd in runner.commands_named("arch-chroot")]
        assert "useradd" not in in_root
        assert "chpasswd" not in in_root

    def test_files_written(self, recording_runner, tmp_path):
        config = InstallConfig(hostname="box", keymap="de-latin1", locale="de_DE.UTF-8", username="alice")
        configure_system(config, str(tmp_path), recording_runner)
        assert (tmp_path / "etc" / "hostname").read_text() == "box\n"
        assert (tmp_path / "etc" / "vconsole.conf").read_text() == "KEYMAP=de-latin1\n"
        assert (tmp_path / "etc" / "locale.conf").read_text() == "LANG=de_DE.UTF-8\n"
        sudoers = tmp_path / "etc" / "sudoers.d" / "10-wheel"
        assert sudoers.read_text() == "%wheel ALL=(ALL:ALL) ALL\n"
        assert sudoers.stat().st_mode & 0o777 == 0o440

    def test_passwords_never_logged(self, runner, caplog):
        config = InstallConfig(username="alice", root_password="rootpw", user_password="alicepw")
        with caplog.at_level(logging.DEBUG, logger="archsetup"):
            configure_system(config, "/mnt", runner)
        assert ["arch-chroot", "/mnt", "chpasswd"] in runner.commands_named("arch-chroot")
        assert "rootpw" not in caplog.text
        assert "alicepw" not in caplog.text

    def test_chroot_failure(self, failing_runner):
        with pytest.raises(SystemConfigError, match="locale generation"):
            configure_system(InstallConfig(), "/mnt", failing_runner({"locale-gen"}))
