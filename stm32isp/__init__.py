"""
stm32isp - A utility for programming STM32 flash over the USART bootloader or an ST-LINK probe.
"""

from .hexfile import FirmwareImage, decode_hex, load_firmware
from .programmer import StlinkProgrammer, UsartProgrammer
from .session import DownloadOutcome, DownloadSession, run_download
from .target_helper import TargetHelper
from .transport import SerialLink, UsbLink, open_probe
from .exceptions import (
    STM32ISPException,
    FirmwareFormatException,
    TransportDisconnectedException,
    ResponseTimeoutException,
    UnexpectedResponseException,
    NackReceivedException,
    HandshakeFailedException,
    GetIdFailedException,
    DownloadCancelledException,
    DeviceException
)

__version__ = '1.0.0'
