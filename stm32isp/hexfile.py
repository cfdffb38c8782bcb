"""
Firmware file handling for stm32isp.
Decodes Intel HEX text and loads raw binaries into a FirmwareImage.
"""

import logging
import os
from typing import Dict, NamedTuple

from .config import DEFAULT_BASE_ADDRESS
from .exceptions import FileNotFoundException, FirmwareFormatException

logger = logging.getLogger(__name__)

# Intel HEX record types
DATA_RECORD = 0x00
EOF_RECORD = 0x01
EXTENDED_SEGMENT_ADDRESS = 0x02
START_SEGMENT_ADDRESS = 0x03
EXTENDED_LINEAR_ADDRESS = 0x04
START_LINEAR_ADDRESS = 0x05

# Value of erased flash, used to fill gaps between records
ERASED_BYTE = 0xFF

HEX_EXTENSIONS = ('.hex', '.ihx')


class FirmwareImage(NamedTuple):
    """Contiguous firmware image ready to be written at base_address."""
    data: bytes
    base_address: int
    size: int


def _parse_field(line: str, start: int, width: int, line_no: int) -> int:
    field = line[start:start + width]
    try:
        return int(field, 16)
    except ValueError:
        raise FirmwareFormatException(f'line {line_no} contains invalid hex digits {field!r}')


def _record_data(line: str, count: int, line_no: int) -> bytes:
    """
    Read count byte pairs after the record header.

    The declared count is trusted over the line length: pairs missing from a
    short line read as 0x00, and characters beyond the count are not read.
    """
    data = bytearray(count)
    for i in range(count):
        start = 9 + i * 2
        if start + 2 <= len(line):
            data[i] = _parse_field(line, start, 2, line_no)
    return bytes(data)


def decode_hex(text: str) -> FirmwareImage:
    """
    Decode Intel HEX text into a contiguous firmware image.

    Gaps between records are filled with 0xFF. Record checksums are not
    verified and unknown record types are skipped. A record's declared byte
    count is not checked against the line length.

    Args:
        text: Intel HEX file content

    Returns:
        FirmwareImage spanning the lowest to the highest written address

    Raises:
        FirmwareFormatException: If the text holds no records or no data
    """
    byte_map: Dict[int, int] = {}
    linear_ext = 0
    segment_ext = 0
    records = 0

    for line_no, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.strip()
        if not line.startswith(':'):
            continue
        records += 1
        if len(line) < 11:
            continue

        count = _parse_field(line, 1, 2, line_no)
        address = _parse_field(line, 3, 4, line_no)
        record_type = _parse_field(line, 7, 2, line_no)

        if record_type == DATA_RECORD:
            base = (linear_ext << 16) + (segment_ext << 4)
            for i, value in enumerate(_record_data(line, count, line_no)):
                byte_map[base + address + i] = value
        elif record_type == EXTENDED_SEGMENT_ADDRESS:
            if count == 2:
                segment_ext = int.from_bytes(_record_data(line, 2, line_no), 'big')
                logger.debug(f"Extended segment address: {segment_ext:#06x}")
        elif record_type == EXTENDED_LINEAR_ADDRESS:
            if count == 2:
                linear_ext = int.from_bytes(_record_data(line, 2, line_no), 'big')
                logger.debug(f"Extended linear address: {linear_ext:#06x}")
        elif record_type in (EOF_RECORD, START_SEGMENT_ADDRESS, START_LINEAR_ADDRESS):
            pass
        else:
            logger.debug(f"Ignoring unknown record type {record_type:#04x} on line {line_no}")

    if records == 0:
        raise FirmwareFormatException('no Intel HEX records found')
    if not byte_map:
        raise FirmwareFormatException('no data records found')

    min_address = min(byte_map)
    max_address = max(byte_map)
    buffer = bytearray([ERASED_BYTE]) * (max_address - min_address + 1)
    for address, value in byte_map.items():
        buffer[address - min_address] = value

    logger.info(f"HEX decoded: base {min_address:#010x}, size {len(buffer)} bytes, "
                f"range {min_address:#010x}-{max_address:#010x}")
    return FirmwareImage(bytes(buffer), min_address, len(buffer))


def load_firmware(path: str, base_address: int = DEFAULT_BASE_ADDRESS) -> FirmwareImage:
    """
    Load a firmware file from disk.

    Files ending in .hex or .ihx are decoded as Intel HEX, anything else is
    treated as a raw binary placed at base_address.

    Args:
        path: Path to the firmware file
        base_address: Load address for raw binaries

    Returns:
        FirmwareImage
    """
    if not os.path.isfile(path):
        raise FileNotFoundException(path)

    if os.path.splitext(path)[1].lower() in HEX_EXTENSIONS:
        with open(path, 'r', encoding='ascii', errors='replace') as f:
            return decode_hex(f.read())

    with open(path, 'rb') as f:
        data = f.read()
    if not data:
        raise FirmwareFormatException(f'{path} is empty')
    logger.info(f"BIN loaded: base {base_address:#010x}, size {len(data)} bytes")
    return FirmwareImage(data, base_address, len(data))
