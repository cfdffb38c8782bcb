"""
Command-line interface module for stm32isp.
"""

import argparse
import logging
import signal
import sys
from typing import Any, List, Optional

import serial
from tqdm import tqdm

from .config import DEFAULT_BASE_ADDRESS, DEFAULT_BAUDRATE, DEFAULT_SWD_FREQUENCY, DEFAULT_TARGET, TARGET_DEFS
from .exceptions import STM32ISPException
from .hexfile import HEX_EXTENSIONS, FirmwareImage, load_firmware
from .programmer import StlinkProgrammer, UsartProgrammer
from .session import DownloadOutcome, DownloadSession, run_download
from .target_helper import TargetHelper
from .transport import SerialLink, describe_probe, open_probe

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELLED = 130

PARITY = {
    'even': serial.PARITY_EVEN,
    'none': serial.PARITY_NONE,
}


def setup_logging(verbose: bool = False) -> None:
    """
    Set up logging configuration.

    Args:
        verbose: Whether to enable verbose logging
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler()
        ]
    )


def parse_args(args: List[str] = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Args:
        args: Command-line arguments (optional)

    Returns:
        Parsed arguments
    """
    parser = argparse.ArgumentParser(description="STM32 flash programmer (USART bootloader or ST-LINK)")
    parser.add_argument("-p", "--port", help="Serial port name (USART bootloader)")
    parser.add_argument("-B", "--baudrate", type=int, default=DEFAULT_BAUDRATE, help="Serial baud rate")
    parser.add_argument("--parity", choices=sorted(PARITY), default='even', help="Serial parity")
    parser.add_argument("-t", "--target", default=DEFAULT_TARGET, choices=sorted(TARGET_DEFS), help="Target MCU")
    parser.add_argument("-s", "--stlink", help="Program through an ST-LINK probe", action="store_true")
    parser.add_argument("--swd-freq", type=int, default=DEFAULT_SWD_FREQUENCY, help="SWD clock in Hz")
    parser.add_argument("-v", "--verbose", help="Enable verbose logging", action="store_true")

    subparsers = parser.add_subparsers(dest='command', help='Operations')

    write_flash_parser = subparsers.add_parser('write_flash', help='Download firmware to the device')
    write_flash_parser.add_argument('firmware_file', help='Intel HEX or raw binary file')
    write_flash_parser.add_argument('address', nargs='?', help='Load address for raw binaries')

    subparsers.add_parser('erase_flash', help='Mass erase the flash of the device')
    subparsers.add_parser('chip_id', help='Read the chip ID (USART bootloader only)')

    return parser.parse_args(args)


class ProgressBar:
    """Feeds on_progress callbacks into a tqdm bar."""

    def __init__(self, desc: str = 'Writing'):
        self.desc = desc
        self.pbar = None
        self.last_written = 0

    def show(self, written: int, total: int) -> None:
        if self.pbar is None:
            self.pbar = tqdm(total=total, unit='B', unit_scale=True, desc=self.desc)
        self.pbar.update(written - self.last_written)
        self.last_written = written
        if written == total:
            self.close()

    def close(self) -> None:
        if self.pbar is not None:
            self.pbar.close()
            self.pbar = None


def choose_probe(candidates: List[Any]) -> Optional[Any]:
    """Ask on the terminal which of several attached probes to use."""
    for index, device in enumerate(candidates):
        print(f"[{index}] {describe_probe(device)}")
    try:
        choice = input("Select probe: ").strip()
    except EOFError:
        return None
    if not choice.isdigit() or int(choice) >= len(candidates):
        logger.error(f"Invalid probe selection: {choice!r}")
        return None
    return candidates[int(choice)]


def open_link(args: argparse.Namespace):
    """Open the serial port or probe selected on the command line."""
    if args.stlink:
        return open_probe(chooser=choose_probe)
    return SerialLink.open(args.port, baudrate=args.baudrate, parity=PARITY[args.parity])


def prepare_image(args: argparse.Namespace, target_helper: TargetHelper) -> Optional[FirmwareImage]:
    """Load and range check the firmware file for write_flash, before any link is opened."""
    if args.command != 'write_flash':
        return None
    base_address = DEFAULT_BASE_ADDRESS
    if args.address:
        base_address = target_helper.parse_address(args.address)
        if args.firmware_file.lower().endswith(HEX_EXTENSIONS):
            logger.warning("HEX files carry their own addresses, ignoring the address argument")
    image = load_firmware(args.firmware_file, base_address)
    target_helper.check_image_range(image.base_address, image.size)
    return image


def build_operation(args: argparse.Namespace, programmer, image: Optional[FirmwareImage]):
    """Return a callable taking a DownloadSession that performs the command."""
    if args.command == 'write_flash':
        logger.info(f"Downloading {args.firmware_file} to address {image.base_address:#010x}")
        if args.stlink:
            return lambda session: programmer.program(image, session, args.swd_freq)
        return lambda session: programmer.program(image, session)

    if args.command == 'erase_flash':
        if args.stlink:
            def erase(session):
                programmer.connect(args.swd_freq)
                programmer.erase_flash()
            return erase

        def erase(session):
            programmer.handshake()
            programmer.erase_all()
        return erase

    if args.command == 'chip_id':
        def chip_id(session):
            programmer.handshake()
            print(programmer.get_chip_id().hex(' '))
        return chip_id

    raise ValueError(f"Unknown command: {args.command}")


def run_command(args: argparse.Namespace) -> int:
    """
    Run the specified command.

    Args:
        args: Parsed arguments

    Returns:
        Exit code
    """
    if not args.command:
        logger.error("No command specified")
        return EXIT_FAILED
    if not args.stlink and not args.port:
        logger.error("A serial port (-p) is required unless --stlink is given")
        return EXIT_FAILED
    if args.stlink and args.command == 'chip_id':
        logger.error("chip_id is only available through the USART bootloader")
        return EXIT_FAILED

    target_helper = TargetHelper(args.target)
    try:
        image = prepare_image(args, target_helper)
        link = open_link(args)
    except STM32ISPException as e:
        logger.error(str(e))
        return EXIT_FAILED

    programmer = StlinkProgrammer(link) if args.stlink else UsartProgrammer(link)
    operation = build_operation(args, programmer, image)
    progress_bar = ProgressBar()
    session = DownloadSession(on_progress=progress_bar.show)

    def request_cancel(signum, frame):
        logger.warning("Cancellation requested, stopping at the next chunk boundary")
        session.cancel()

    previous_handler = signal.signal(signal.SIGINT, request_cancel)
    try:
        outcome = run_download(operation, session, link)
    finally:
        signal.signal(signal.SIGINT, previous_handler)
        progress_bar.close()

    if outcome is DownloadOutcome.COMPLETED:
        logger.info("Operation completed successfully")
        return EXIT_OK
    if outcome is DownloadOutcome.CANCELLED:
        return EXIT_CANCELLED
    return EXIT_FAILED


def main(argv: List[str] = None) -> int:
    """
    Main entry point for the CLI.

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    args = parse_args(argv)
    setup_logging(args.verbose)

    try:
        return run_command(args)
    except Exception as e:
        logger.error(f"Unhandled exception: {e}")
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
