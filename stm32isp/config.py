"""
Configuration module for stm32isp.
Contains target definitions and protocol constants used by the programmers.
"""

# Target definitions with flash memory layout and named regions
TARGET_DEFS = {
    'STM32F030x8': {
        'flash_size': 0x10000,
        'flash_start_addr': 0x08000000,
        'flash_range': (0x08000000, 0x0800FFFF),
        'region': {
            'flash': 0x08000000,
        }
    },
    'STM32F103x8': {
        'flash_size': 0x10000,
        'flash_start_addr': 0x08000000,
        'flash_range': (0x08000000, 0x0800FFFF),
        'region': {
            'flash': 0x08000000,
        }
    },
    'STM32F103xB': {
        'flash_size': 0x20000,
        'flash_start_addr': 0x08000000,
        'flash_range': (0x08000000, 0x0801FFFF),
        'region': {
            'flash': 0x08000000,
            'bootloader': 0x08000000,
            'app': 0x08002000,
        }
    },
    'STM32F103xE': {
        'flash_size': 0x80000,
        'flash_start_addr': 0x08000000,
        'flash_range': (0x08000000, 0x0807FFFF),
        'region': {
            'flash': 0x08000000,
        }
    },
    'STM32F407xG': {
        'flash_size': 0x100000,
        'flash_start_addr': 0x08000000,
        'flash_range': (0x08000000, 0x080FFFFF),
        'region': {
            'flash': 0x08000000,
            'app': 0x08020000,
        }
    },
}

# Default target to use if not specified
DEFAULT_TARGET = 'STM32F103xB'

# Raw binaries carry no address, they land here unless told otherwise
DEFAULT_BASE_ADDRESS = 0x08000000
DEFAULT_BAUDRATE = 115200
DEFAULT_SWD_FREQUENCY = 1800000


class UsartProtocol:
    """Constants for the STM32 USART bootloader protocol (AN3155)."""
    SYNC_BYTE = 0x7F
    ACK = 0x79
    NACK = 0x1F

    # Command codes (AN3155 table 2)
    GET_ID = 0x02
    WRITE_MEMORY = 0x31
    ERASE = 0x43

    # Global erase parameter followed by its checksum
    MASS_ERASE = b'\xFF\x00'

    MAX_WRITE_SIZE = 256
    DEFAULT_PAGE_SIZE = 256

    # Timeouts in seconds
    HANDSHAKE_TIMEOUT = 1.0
    ACK_TIMEOUT = 1.0
    ERASE_TIMEOUT = 30.0
    WRITE_TIMEOUT = 5.0

    # Delays in seconds
    CLEAR_SETTLE = 0.1
    HANDSHAKE_RETRY_DELAY = 0.5
    GET_ID_RETRY_DELAY = 0.3
    YIELD_DELAY = 0.005


class StlinkProtocol:
    """Constants for the ST-LINK probe command set."""
    USB_VID = 0x0483
    # ST-LINK/V2, V2-1, V2-1 (no MSD), V3
    USB_PID_LIST = (0x3748, 0x374B, 0x374A, 0x3752)

    FRAME_SIZE = 16

    GET_VERSION = 0xF1
    DEBUG_COMMAND = 0xF2
    DEBUG_ENTER = 0x20
    DEBUG_ENTER_SWD = 0xA3
    DEBUG_WRITE_MEM_32BIT = 0x0D
    DEBUG_ERASE_FLASH = 0x43
    DEBUG_RESETSYS = 0x22
    DEBUG_FORCEDEBUG = 0xA4
    DEBUG_APIV2_SWD_SET_FREQ = 0x43
    DEBUG_HALT = 0x02

    MAX_PACKET_DATA = 128
    DEFAULT_PAGE_SIZE = 256

    USB_TIMEOUT_MS = 1000

    # Settle delays in seconds
    ENTER_SWD_DELAY = 0.02
    FORCE_DEBUG_DELAY = 0.01
    SET_FREQ_DELAY = 0.01
    HALT_DELAY = 0.01
    ERASE_DELAY = 1.0
    ERASE_SETTLE_DELAY = 0.5
    PACKET_DELAY = 0.002
    CHUNK_DELAY = 0.01
    RESET_DELAY = 0.02
