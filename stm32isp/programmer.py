"""
Programmer module for stm32isp.
Handles the STM32 USART bootloader protocol and the ST-LINK probe command set.
"""

import logging
import struct
import time
from enum import Enum
from functools import reduce
from typing import Optional

from .config import DEFAULT_SWD_FREQUENCY, StlinkProtocol, UsartProtocol
from .exceptions import (
    DownloadCancelledException,
    GetIdFailedException,
    HandshakeFailedException,
    InvalidChunkSizeException,
    NackReceivedException,
    ResponseTimeoutException,
    UnexpectedResponseException
)
from .hexfile import FirmwareImage
from .session import DownloadSession

logger = logging.getLogger(__name__)


def xor_checksum(data: bytes) -> int:
    """XOR of all bytes, as used by every AN3155 payload."""
    return reduce(lambda acc, b: acc ^ b, data, 0)


def command_frame(opcode: int) -> bytes:
    """Opcode followed by its complement."""
    return bytes([opcode, opcode ^ 0xFF])


def is_retryable(error: Exception) -> bool:
    """Whether a failed exchange may be attempted again."""
    return isinstance(error, (ResponseTimeoutException,
                              UnexpectedResponseException,
                              NackReceivedException))


class UsartState(Enum):
    DISCONNECTED = 'disconnected'
    SYNCING = 'syncing'
    SYNCED = 'synced'
    ERASING = 'erasing'
    WRITING = 'writing'
    DONE = 'done'
    CANCELLED = 'cancelled'
    FAILED = 'failed'


class UsartProgrammer:
    """STM32 programmer speaking the USART bootloader protocol (AN3155)."""

    def __init__(self, link):
        """
        Initialize the programmer on an open stream link.

        Args:
            link: SerialLink (or anything with clear/send_frame/read_byte/receive_frame)
        """
        self.link = link
        self.state = UsartState.DISCONNECTED

    def _wait_ack(self, timeout: float = UsartProtocol.ACK_TIMEOUT, command: Optional[int] = None) -> None:
        response = self.link.read_byte(timeout)
        if response == UsartProtocol.ACK:
            return
        if response == UsartProtocol.NACK:
            raise NackReceivedException(command)
        raise UnexpectedResponseException(response, 'ACK (0x79)')

    def _send_command(self, opcode: int) -> None:
        self.link.send_frame(command_frame(opcode))
        self._wait_ack(command=opcode)

    def handshake(self, max_retries: int = 10) -> None:
        """
        Synchronize with the bootloader.

        Both ACK and NACK count as success: a bootloader that is already
        synchronized answers NACK to the extra sync byte.

        Args:
            max_retries: Number of attempts

        Raises:
            HandshakeFailedException: If all attempts failed
            TransportDisconnectedException: If the link went away
        """
        self.state = UsartState.SYNCING
        logger.info(f"Starting handshake, up to {max_retries} attempts")
        last_error = None

        for attempt in range(1, max_retries + 1):
            try:
                self.link.clear()
                self.link.send_frame(bytes([UsartProtocol.SYNC_BYTE]))
                response = self.link.read_byte(UsartProtocol.HANDSHAKE_TIMEOUT)
                if response == UsartProtocol.ACK:
                    logger.info(f"Handshake successful (attempt {attempt}/{max_retries})")
                    self.state = UsartState.SYNCED
                    return
                if response == UsartProtocol.NACK:
                    logger.info(f"Received NACK, bootloader already synchronized "
                                f"(attempt {attempt}/{max_retries})")
                    self.state = UsartState.SYNCED
                    return
                raise UnexpectedResponseException(response, 'ACK (0x79) or NACK (0x1f)')
            except Exception as e:
                if not is_retryable(e):
                    self.state = UsartState.FAILED
                    raise
                last_error = e
                logger.debug(f"Handshake attempt {attempt} failed: {e}")

            if attempt < max_retries:
                time.sleep(UsartProtocol.HANDSHAKE_RETRY_DELAY)

        self.state = UsartState.FAILED
        logger.error("Handshake failed")
        raise HandshakeFailedException(max_retries, last_error)

    def get_chip_id(self, max_retries: int = 10) -> bytes:
        """
        Read the product ID.

        Args:
            max_retries: Number of attempts

        Returns:
            Chip ID bytes, most significant first

        Raises:
            GetIdFailedException: If all attempts failed
            TransportDisconnectedException: If the link went away
        """
        last_error = None
        for attempt in range(1, max_retries + 1):
            try:
                self._send_command(UsartProtocol.GET_ID)
                length = self.link.read_byte(UsartProtocol.ACK_TIMEOUT)
                chip_id = self.link.receive_frame(length + 1, UsartProtocol.ACK_TIMEOUT)
                self._wait_ack(command=UsartProtocol.GET_ID)
                logger.debug(f"Chip ID read on attempt {attempt}/{max_retries}")
                return chip_id
            except Exception as e:
                if not is_retryable(e):
                    self.state = UsartState.FAILED
                    raise
                last_error = e
                logger.debug(f"Get ID attempt {attempt} failed: {e}")

            if attempt < max_retries:
                time.sleep(UsartProtocol.GET_ID_RETRY_DELAY)

        self.state = UsartState.FAILED
        logger.error("Failed to read chip ID")
        raise GetIdFailedException(max_retries, last_error)

    def erase_all(self) -> None:
        """Mass erase the flash. The final ACK may take up to 30 seconds."""
        self.state = UsartState.ERASING
        logger.info("Erasing flash")
        self._send_command(UsartProtocol.ERASE)
        self.link.send_frame(UsartProtocol.MASS_ERASE)
        self._wait_ack(UsartProtocol.ERASE_TIMEOUT, command=UsartProtocol.ERASE)
        logger.info("Flash erased")

    def write_memory(self, address: int, data: bytes) -> None:
        """
        Write up to 256 bytes starting at address.

        Args:
            address: Target address
            data: Bytes to write

        Raises:
            InvalidChunkSizeException: If data is empty or longer than 256 bytes,
                in which case nothing is sent
        """
        if not 0 < len(data) <= UsartProtocol.MAX_WRITE_SIZE:
            raise InvalidChunkSizeException(len(data), UsartProtocol.MAX_WRITE_SIZE)

        logger.debug(f"Writing {len(data)} bytes at {address:#010x}")
        self._send_command(UsartProtocol.WRITE_MEMORY)

        address_bytes = struct.pack('>I', address)
        self.link.send_frame(address_bytes + bytes([xor_checksum(address_bytes)]))
        self._wait_ack(command=UsartProtocol.WRITE_MEMORY)

        payload = bytes([len(data) - 1]) + bytes(data)
        self.link.send_frame(payload + bytes([xor_checksum(payload)]))
        self._wait_ack(UsartProtocol.WRITE_TIMEOUT, command=UsartProtocol.WRITE_MEMORY)

    def download(self, image: FirmwareImage, session: Optional[DownloadSession] = None) -> None:
        """
        Write an image in 256 byte chunks. Flash must already be erased.

        Args:
            image: Firmware image
            session: Progress and cancellation for this download
        """
        session = session or DownloadSession()
        chunk_size = UsartProtocol.DEFAULT_PAGE_SIZE
        session.start(image.size)
        self.state = UsartState.WRITING
        logger.info(f"Downloading {image.size} bytes to {image.base_address:#010x}")

        try:
            for offset in range(0, image.size, chunk_size):
                session.checkpoint()
                chunk = image.data[offset:offset + chunk_size]
                self.write_memory(image.base_address + offset, chunk)
                session.advance(len(chunk))

                # let other threads run every couple of chunks
                if offset % (chunk_size * 2) == 0:
                    time.sleep(UsartProtocol.YIELD_DELAY)
        except DownloadCancelledException:
            self.state = UsartState.CANCELLED
            raise
        except Exception:
            self.state = UsartState.FAILED
            raise

        logger.info(f"Download finished, {session.bytes_written} bytes written")

    def program(self, image: FirmwareImage, session: Optional[DownloadSession] = None) -> bytes:
        """
        Full programming sequence: handshake, chip ID, mass erase, download.

        Args:
            image: Firmware image
            session: Progress and cancellation for this download

        Returns:
            Chip ID bytes
        """
        session = session or DownloadSession()
        try:
            session.checkpoint()
            self.handshake()
            session.checkpoint()
            chip_id = self.get_chip_id()
            logger.info(f"Chip ID: {chip_id.hex(' ')}")
            session.checkpoint()
            self.erase_all()
            session.checkpoint()
        except DownloadCancelledException:
            self.state = UsartState.CANCELLED
            raise
        except Exception:
            self.state = UsartState.FAILED
            raise
        self.download(image, session)
        self.state = UsartState.DONE
        return chip_id


class StlinkProgrammer:
    """STM32 programmer driving an ST-LINK probe over SWD."""

    def __init__(self, link):
        """
        Initialize the programmer on an open packet link.

        Args:
            link: UsbLink (or anything with send_frame/receive_frame)
        """
        self.link = link

    def _command(self, *frame: int, delay: float = 0) -> None:
        self.link.send_frame(bytes(frame))
        if delay:
            time.sleep(delay)

    def get_version(self) -> bytes:
        """Query the probe version, confirming the probe answers."""
        self._command(StlinkProtocol.GET_VERSION)
        version = self.link.receive_frame(StlinkProtocol.FRAME_SIZE)
        logger.debug(f"Probe version response: {version.hex(' ')}")
        return version

    def enter_swd(self) -> None:
        self._command(StlinkProtocol.DEBUG_COMMAND, StlinkProtocol.DEBUG_ENTER,
                      StlinkProtocol.DEBUG_ENTER_SWD, delay=StlinkProtocol.ENTER_SWD_DELAY)

    def force_debug(self) -> None:
        self._command(StlinkProtocol.DEBUG_COMMAND, StlinkProtocol.DEBUG_FORCEDEBUG,
                      delay=StlinkProtocol.FORCE_DEBUG_DELAY)

    def set_swd_frequency(self, frequency: int = DEFAULT_SWD_FREQUENCY) -> None:
        self._command(StlinkProtocol.DEBUG_COMMAND, StlinkProtocol.DEBUG_APIV2_SWD_SET_FREQ,
                      *struct.pack('<I', frequency), delay=StlinkProtocol.SET_FREQ_DELAY)

    def halt(self) -> None:
        self._command(StlinkProtocol.DEBUG_COMMAND, StlinkProtocol.DEBUG_HALT,
                      delay=StlinkProtocol.HALT_DELAY)

    def erase_flash(self) -> None:
        """Erase the whole flash and wait for it to finish."""
        logger.info("Erasing flash")
        self._command(StlinkProtocol.DEBUG_COMMAND, StlinkProtocol.DEBUG_ERASE_FLASH,
                      0xFF, 0xFF, 0xFF, 0xFF, delay=StlinkProtocol.ERASE_DELAY)

    def reset(self) -> None:
        self._command(StlinkProtocol.DEBUG_COMMAND, StlinkProtocol.DEBUG_RESETSYS,
                      delay=StlinkProtocol.RESET_DELAY)

    def connect(self, swd_frequency: int = DEFAULT_SWD_FREQUENCY) -> bytes:
        """Attach to the target over SWD and halt the core."""
        version = self.get_version()
        self.enter_swd()
        self.force_debug()
        self.set_swd_frequency(swd_frequency)
        self.halt()
        logger.info("Target halted")
        return version

    def write_memory(self, address: int, data: bytes) -> None:
        """
        Write data starting at address using 32-bit memory writes.

        Data is zero padded to a word boundary and sent as 128 byte blocks,
        each a header frame followed by 16 byte data packets.
        """
        data = bytes(data)
        if len(data) % 4:
            data += bytes(4 - len(data) % 4)

        for offset in range(0, len(data), StlinkProtocol.MAX_PACKET_DATA):
            block = data[offset:offset + StlinkProtocol.MAX_PACKET_DATA]
            header = struct.pack('<BBII', StlinkProtocol.DEBUG_COMMAND,
                                 StlinkProtocol.DEBUG_WRITE_MEM_32BIT,
                                 address + offset, len(block))
            self.link.send_frame(header)
            for i in range(0, len(block), StlinkProtocol.FRAME_SIZE):
                self.link.send_frame(block[i:i + StlinkProtocol.FRAME_SIZE])
            time.sleep(StlinkProtocol.PACKET_DELAY)

    def download(self, image: FirmwareImage, session: Optional[DownloadSession] = None,
                 swd_frequency: int = DEFAULT_SWD_FREQUENCY) -> None:
        """
        Full programming sequence: connect, halt, erase, write, reset.

        Args:
            image: Firmware image
            session: Progress and cancellation for this download
            swd_frequency: SWD clock in Hz
        """
        session = session or DownloadSession()
        chunk_size = StlinkProtocol.DEFAULT_PAGE_SIZE
        session.start(image.size)

        try:
            self.connect(swd_frequency)
            self.erase_flash()
            time.sleep(StlinkProtocol.ERASE_SETTLE_DELAY)

            logger.info(f"Downloading {image.size} bytes to {image.base_address:#010x}")
            for offset in range(0, image.size, chunk_size):
                session.checkpoint()
                chunk = image.data[offset:offset + chunk_size]
                self.write_memory(image.base_address + offset, chunk)
                time.sleep(StlinkProtocol.CHUNK_DELAY)
                session.advance(len(chunk))

            self.reset()
        except DownloadCancelledException:
            # A cancellation is not a failure, keep it out of the error log
            raise
        except Exception as e:
            logger.error(f"Probe download failed: {e}")
            raise

        logger.info(f"Download finished, {session.bytes_written} bytes written")

    def program(self, image: FirmwareImage, session: Optional[DownloadSession] = None,
                swd_frequency: int = DEFAULT_SWD_FREQUENCY) -> None:
        """Same as download, so both programmers share a program() entry point."""
        self.download(image, session, swd_frequency)
