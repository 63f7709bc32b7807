"""
External command execution.

Every command the installer runs goes through CommandRunner, which records
it and, in simulation mode, answers it with canned output instead of running it.
"""
import logging
import os
import subprocess
import uuid
from enum import Enum
from typing import Any, Dict, List

from archsetup.utils.format import TermColors, colorize

logger = logging.getLogger('archsetup')

DEFAULT_SIMULATED_DISK_BYTES = 500107862016  # ~465.76 GiB

SIMULATED_KEYMAPS = ["be-latin1", "de", "de-latin1", "es", "fr", "fr-latin1", "it", "uk", "us"]
SIMULATED_GPU = "00:02.0 VGA compatible controller [0300]: Intel Corporation UHD Graphics 620 [8086:5917]"


class SimulationMode(Enum):
    """Whether commands really run"""
    DISABLED = 0
    SIMULATE = 1  # Record and log only


class CommandRunner:
    """
    Runs external commands and keeps the ordered list of what was run.

    Args:
        simulation_mode: DISABLED to execute, SIMULATE to only record
        colored_output: Whether log messages may carry ANSI colors
    """
    def __init__(self, simulation_mode: SimulationMode, colored_output: bool = True):
        self.simulation_mode = simulation_mode
        self.colored_output = colored_output
        self.commands_run: List[Dict[str, Any]] = []

        self.simulation_id = uuid.uuid4().hex[:8]
        # Identifiers handed out per device, stable for the whole session
        self.simulated_uuids: Dict[str, str] = {}
        self.simulated_partuuids: Dict[str, str] = {}
        self.simulation_params: Dict[str, Any] = {}

    @property
    def simulating(self) -> bool:
        return self.simulation_mode == SimulationMode.SIMULATE

    def set_simulation_params(self, params: Dict[str, Any]) -> None:
        """
        Replace the values simulated commands answer with.

        Recognised keys: disk_size_bytes, mountpoints, keymaps, gpu, cpu_vendor.
        """
        self.simulation_params = params

    def run(self, cmd: List[str], check: bool = True, **kwargs) -> subprocess.CompletedProcess:
        """
        Execute a command, or record and answer it in simulation mode.

        Args:
            cmd: Program and arguments
            check: Raise on a non-zero exit status
            **kwargs: Passed on to subprocess.run, e.g. input

        Returns:
            Completed process with text stdout and stderr

        Raises:
            subprocess.CalledProcessError: If check is set and the command fails
        """
        cmd_str = ' '.join(cmd)
        logger.debug(f"Command requested: {cmd_str}")

        self.commands_run.append({
            "command": list(cmd),
            "simulated": self.simulating
        })

        if self.simulating:
            sim_prefix = colorize(f"[SIM:{self.simulation_id}]", TermColors.SIM, self.colored_output)
            logger.info(f"{sim_prefix} Would execute: {cmd_str}")
            return self._simulate_command(cmd, **kwargs)

        try:
            # Terminal interrupts reach the installer only, children always run to completion
            return subprocess.run(
                cmd,
                check=check,
                text=True,
                capture_output=True,
                start_new_session=True,
                **kwargs
            )
        except subprocess.CalledProcessError as e:
            logger.error(colorize(f"Command failed: {cmd_str}", TermColors.ERROR, self.colored_output))
            logger.error(f"Return code: {e.returncode}")
            logger.error(f"Stdout: {e.stdout}")
            logger.error(f"Stderr: {e.stderr}")
            raise
        except FileNotFoundError as e:
            logger.error(colorize(f"Command not found: {cmd[0]}", TermColors.ERROR, self.colored_output))
            if check:
                raise subprocess.CalledProcessError(127, cmd, output="", stderr=str(e)) from e
            return subprocess.CompletedProcess(args=cmd, returncode=127, stdout="", stderr=str(e))

    def commands_named(self, name: str) -> List[List[str]]:
        """Return every recorded command whose executable is `name`."""
        return [
            record["command"] for record in self.commands_run
            if record["command"] and os.path.basename(record["command"][0]) == name
        ]

    def _simulate_command(self, cmd: List[str], **kwargs) -> subprocess.CompletedProcess:
        """Successful result, with canned stdout for the query tools the installer reads."""
        result = subprocess.CompletedProcess(args=cmd, returncode=0, stdout="", stderr="")
        program = os.path.basename(cmd[0]) if cmd else ""

        handlers = {
            "blkid": self._simulate_blkid,
            "blockdev": self._simulate_blockdev,
            "lsblk": self._simulate_lsblk,
            "localectl": self._simulate_localectl,
            "lspci": self._simulate_lspci,
            "genfstab": self._simulate_genfstab,
        }
        handler = handlers.get(program)
        if handler is not None:
            return handler(cmd, result)

        if "input" in kwargs:
            logger.debug("Command input withheld from the log")

        return result

    def _simulate_blkid(self, cmd: List[str], result: subprocess.CompletedProcess) -> subprocess.CompletedProcess:
        tag = cmd[cmd.index("-s") + 1] if "-s" in cmd[:-1] else None
        known = {"UUID": self.simulated_uuids, "PARTUUID": self.simulated_partuuids}.get(tag)
        if known is not None:
            device = cmd[-1]
            known.setdefault(device, str(uuid.uuid4()))
            result.stdout = known[device] + "\n"
        return result

    def _simulate_blockdev(self, cmd: List[str], result: subprocess.CompletedProcess) -> subprocess.CompletedProcess:
        if "--getsize64" in cmd:
            size = self.simulation_params.get("disk_size_bytes", DEFAULT_SIMULATED_DISK_BYTES)
            result.stdout = f"{size}\n"

        return result

    def _simulate_lsblk(self, cmd: List[str], result: subprocess.CompletedProcess) -> subprocess.CompletedProcess:
        columns = cmd[cmd.index("-o") + 1] if "-o" in cmd else ""

        if "-d" in cmd and "NAME" in columns:
            size_gib = self.simulation_params.get("disk_size_bytes", DEFAULT_SIMULATED_DISK_BYTES) / 1024**3
            result.stdout = f"sda {size_gib:.1f}G disk\nsr0 1024M rom\n"
        elif columns == "TYPE":
            result.stdout = "disk\n"
        elif columns == "MOUNTPOINTS":
            result.stdout = "\n".join(self.simulation_params.get("mountpoints", [])) + "\n"
        elif columns == "MODEL":
            result.stdout = "SIMULATED DISK\n"

        return result

    def _simulate_localectl(self, cmd: List[str], result: subprocess.CompletedProcess) -> subprocess.CompletedProcess:
        if "list-keymaps" in cmd:
            result.stdout = "\n".join(self.simulation_params.get("keymaps", SIMULATED_KEYMAPS)) + "\n"

        return result

    def _simulate_lspci(self, cmd: List[str], result: subprocess.CompletedProcess) -> subprocess.CompletedProcess:
        result.stdout = self.simulation_params.get("gpu", SIMULATED_GPU) + "\n"
        return result

    def _simulate_genfstab(self, cmd: List[str], result: subprocess.CompletedProcess) -> subprocess.CompletedProcess:
        result.stdout = f"# Simulated mount table for {cmd[-1]}\n"
        return result

    def get_simulation_report(self) -> str:
        """Numbered list of the recorded commands, in the order they were issued."""
        if not self.simulating:
            return "Simulation mode is not active."

        rule = "=" * 80
        lines = [rule, f"SIMULATION REPORT [ID: {self.simulation_id}]", rule, ""]
        lines += [
            f"{number:3d}. {' '.join(record['command'])}"
            for number, record in enumerate(self.commands_run, 1)
        ]
        lines += ["", "-" * 80, f"Total commands simulated: {len(self.commands_run)}", rule]
        return "\n".join(lines)
