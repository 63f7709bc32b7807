"""
Command-line interface for archsetup.

This module handles argument parsing, prerequisite checks and starts the
interactive installer.
"""
import argparse
import logging
import sys
from typing import List, Optional

from archsetup.shell import EXIT_FAILURE, EXIT_OK, InteractiveShell
from archsetup.utils.logging import setup_logging
from archsetup.utils.command import CommandRunner, SimulationMode
from archsetup.utils.format import TermColors, colorize, parse_size_spec
from archsetup.utils.validation import (
    DEFAULT_MIN_ROOT_SIZE_GIB, SystemCatalog, ValidationRules, check_prerequisites
)
from archsetup.core.exceptions import CapacityError, PreconditionError, StageFailure, ValidationError
from archsetup.core.hardware import HardwareProbe
from archsetup.core.partition import DEFAULT_EFI_SIZE_MIB
from archsetup.core.pipeline import DEFAULT_TARGET, InstallPipeline
from archsetup.core.settings import InstallConfig, apply_preset, load_preset

logger = logging.getLogger('archsetup')

EXIT_INTERRUPTED = 130
MIN_EFI_SIZE_MIB = 512
MAX_EFI_SIZE_MIB = 4096


def _efi_size(value: str) -> int:
    size = int(value)
    if not MIN_EFI_SIZE_MIB <= size <= MAX_EFI_SIZE_MIB:
        raise argparse.ArgumentTypeError(
            f"EFI size must be between {MIN_EFI_SIZE_MIB} and {MAX_EFI_SIZE_MIB} MiB"
        )
    return size


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Namespace containing parsed arguments
    """
    parser = argparse.ArgumentParser(
        prog="archsetup",
        description="Interactive installer writing a fresh Arch Linux system onto one disk"
    )

    parser.add_argument(
        "-t", "--target",
        default=DEFAULT_TARGET,
        help=f"Mount point for the target root (default: {DEFAULT_TARGET})"
    )

    parser.add_argument(
        "--efi-size",
        type=_efi_size,
        default=DEFAULT_EFI_SIZE_MIB,
        help=f"EFI system partition size in MiB (default: {DEFAULT_EFI_SIZE_MIB})"
    )

    parser.add_argument(
        "--min-root-size",
        type=int,
        default=DEFAULT_MIN_ROOT_SIZE_GIB,
        help=f"Smallest accepted root partition in GiB (default: {DEFAULT_MIN_ROOT_SIZE_GIB})"
    )

    parser.add_argument(
        "-p", "--preset",
        help="JSON file with configuration values to start from"
    )

    parser.add_argument(
        "--start",
        action="store_true",
        help="Go straight to the installation confirmation (use with --preset)"
    )

    parser.add_argument(
        "--keep-mounted",
        action="store_true",
        help="Leave the new system mounted on the target after a successful installation"
    )

    # Simulation options
    parser.add_argument(
        "-s", "--simulate",
        action="store_true",
        help="Simulate operations without making any changes to the system"
    )

    parser.add_argument(
        "--sim-disk-size",
        help="Simulated disk size (e.g., '500G', '1T') - only used in simulation mode"
    )

    parser.add_argument(
        "--no-color",
        action="store_true",
        help="Disable colored output"
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging"
    )

    parser.add_argument(
        "--log-file",
        help="Also write a full debug log to this file"
    )

    return parser.parse_args(argv)


def display_simulation_summary(cmd_runner: CommandRunner) -> None:
    """Print the commands a simulated run would have executed."""
    if not cmd_runner.simulating:
        return

    stars = "*" * 80
    print(f"\n{colorize(stars, TermColors.SIM, cmd_runner.colored_output)}")
    print(colorize("SIMULATION COMPLETE - NO CHANGES WERE MADE", TermColors.SIM + TermColors.BOLD,
                   cmd_runner.colored_output))
    print(f"{colorize(stars, TermColors.SIM, cmd_runner.colored_output)}\n")
    print(cmd_runner.get_simulation_report())
    print(f"\n{colorize('To execute these operations for real, run without the --simulate flag.', TermColors.SIM, cmd_runner.colored_output)}")


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main function.

    Returns:
        Exit code (0 for success or explicit exit, non-zero for errors)
    """
    args = None
    try:
        args = parse_arguments(argv)

        setup_logging(args.debug, args.log_file)

        cmd_runner = CommandRunner(
            SimulationMode.SIMULATE if args.simulate else SimulationMode.DISABLED,
            not args.no_color
        )

        if args.simulate:
            logger.info("Running in simulation mode - NO CHANGES WILL BE MADE")
            sim_params = {}
            if args.sim_disk_size:
                try:
                    sim_params["disk_size_bytes"] = parse_size_spec(args.sim_disk_size)
                except ValueError as e:
                    logger.error(str(e))
                    return EXIT_FAILURE
                logger.info(f"Simulating disk size: {args.sim_disk_size}")
            cmd_runner.set_simulation_params(sim_params)

        rules = ValidationRules(cmd_runner, SystemCatalog(cmd_runner), args.min_root_size)
        config = InstallConfig(efi_size_mib=args.efi_size)

        if args.preset:
            try:
                errors = apply_preset(config, load_preset(args.preset), rules, cmd_runner)
            except ValidationError as e:
                logger.error(str(e))
                return EXIT_FAILURE
            for error in errors:
                logger.warning(f"Preset value rejected: {error}")
            if errors and args.start:
                logger.error("The preset has invalid values, refusing to start")
                return EXIT_FAILURE

        try:
            check_prerequisites(cmd_runner, config.filesystem)
        except PreconditionError as e:
            logger.error(str(e))
            return EXIT_FAILURE

        probe = HardwareProbe(cmd_runner)
        probe.detect()

        def new_pipeline() -> InstallPipeline:
            return InstallPipeline(config, rules, probe, cmd_runner, args.target, args.keep_mounted)

        shell = InteractiveShell(config, rules, probe, cmd_runner, new_pipeline)

        if args.start:
            try:
                new_pipeline().run(shell.confirm)
            except ValidationError as e:
                logger.error(str(e))
                for reason in e.reasons:
                    logger.error(f"  - {reason}")
                return EXIT_FAILURE
            except (CapacityError, PreconditionError, StageFailure) as e:
                logger.error(str(e))
                return EXIT_FAILURE
            # Declining the confirmation is an explicit exit
            code = EXIT_OK
        else:
            code = shell.run()

        display_simulation_summary(cmd_runner)
        return code

    except KeyboardInterrupt:
        logger.error("Operation cancelled by user")
        return EXIT_INTERRUPTED

    except EOFError:
        logger.error("Input closed before the installer finished")
        return EXIT_FAILURE

    except Exception as e:
        logger.error(f"Unexpected error: {e}")
        if args is not None and args.debug:
            import traceback
            traceback.print_exc()
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
