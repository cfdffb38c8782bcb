"""
Transport module for stm32isp.
Wraps an open serial port (stream link) or an ST-LINK USB probe (packet link)
behind the small send_frame/receive_frame surface the programmers use.
"""

import errno
import logging
import time
from typing import Any, Callable, List, Optional, Sequence

import serial
import usb.core
import usb.util

from .config import DEFAULT_BAUDRATE, StlinkProtocol, UsartProtocol
from .exceptions import (
    DeviceException,
    ResponseTimeoutException,
    TransportDisconnectedException
)

logger = logging.getLogger(__name__)


class SerialLink:
    """Byte stream link over a pyserial port."""

    def __init__(self, serial_port: serial.Serial):
        """
        Wrap an already open serial port.

        Args:
            serial_port: Open pyserial port, owned by the caller
        """
        self.serial_port = serial_port

    @classmethod
    def open(cls, port_name: str, baudrate: int = DEFAULT_BAUDRATE,
             parity: str = serial.PARITY_EVEN, timeout: float = 1.0) -> 'SerialLink':
        """
        Open a serial port configured for the USART bootloader (8 data bits,
        even parity, one stop bit by default).

        Args:
            port_name: Serial port name
            baudrate: Baud rate
            parity: pyserial parity constant
            timeout: Default read/write timeout in seconds

        Returns:
            SerialLink owning the opened port

        Raises:
            DeviceException: If the port cannot be opened
        """
        try:
            serial_port = serial.Serial(
                port=port_name,
                baudrate=baudrate,
                bytesize=serial.EIGHTBITS,
                parity=parity,
                stopbits=serial.STOPBITS_ONE,
                timeout=timeout,
                write_timeout=timeout,
            )
        except (serial.SerialException, ValueError) as e:
            logger.error(f"Error opening serial port: {e}")
            raise DeviceException(str(e))
        logger.debug(f"Opened serial port {port_name} at {baudrate} baud")
        return cls(serial_port)

    def close(self) -> None:
        """Close the serial port."""
        if self.serial_port and self.serial_port.is_open:
            self.serial_port.close()
            logger.debug("Serial port closed")
        self.serial_port = None

    def _port(self) -> serial.Serial:
        if self.serial_port is None or not self.serial_port.is_open:
            raise TransportDisconnectedException('serial port is closed')
        return self.serial_port

    def clear(self) -> None:
        """Drop any buffered input and give late bytes time to arrive."""
        port = self._port()
        try:
            port.reset_input_buffer()
        except serial.SerialException as e:
            raise TransportDisconnectedException(str(e))
        time.sleep(UsartProtocol.CLEAR_SETTLE)

    def send_frame(self, data: bytes) -> None:
        """
        Write bytes to the port.

        Raises:
            ResponseTimeoutException: If the write does not complete in time
            TransportDisconnectedException: If the port went away
        """
        port = self._port()
        try:
            port.write(bytes(data))
            port.flush()
        except serial.SerialTimeoutException:
            raise ResponseTimeoutException(port.write_timeout or 0)
        except serial.SerialException as e:
            raise TransportDisconnectedException(str(e))

    def read_byte(self, timeout: float) -> int:
        """
        Read a single byte.

        Args:
            timeout: Read timeout in seconds

        Returns:
            Received byte value

        Raises:
            ResponseTimeoutException: If nothing arrives within timeout
            TransportDisconnectedException: If the port went away
        """
        port = self._port()
        try:
            port.timeout = timeout
            data = port.read(1)
        except serial.SerialException as e:
            raise TransportDisconnectedException(str(e))
        if not data:
            raise ResponseTimeoutException(timeout)
        return data[0]

    def receive_frame(self, length: int, timeout: float) -> bytes:
        """Read exactly length bytes, each within timeout seconds."""
        return bytes(self.read_byte(timeout) for _ in range(length))


def pad_frame(data: Sequence[int], size: int = StlinkProtocol.FRAME_SIZE) -> bytes:
    """Zero pad a command or data packet to the probe frame size."""
    frame = bytes(data)
    if len(frame) >= size:
        return frame
    return frame + bytes(size - len(frame))


def _is_bulk(direction: int) -> Callable[[Any], bool]:
    def match(endpoint) -> bool:
        return (usb.util.endpoint_direction(endpoint.bEndpointAddress) == direction and
                usb.util.endpoint_type(endpoint.bmAttributes) == usb.util.ENDPOINT_TYPE_BULK)
    return match


def _usb_error(e: usb.core.USBError, timeout: float) -> Exception:
    if isinstance(e, usb.core.USBTimeoutError) or e.errno == errno.ETIMEDOUT:
        return ResponseTimeoutException(timeout)
    if e.errno in (errno.ENODEV, errno.EPIPE, errno.EIO):
        return TransportDisconnectedException(str(e))
    return DeviceException(str(e))


class UsbLink:
    """Command/response packet link over the probe's bulk endpoints."""

    def __init__(self, device, interface_number: int, endpoint_in: int, endpoint_out: int,
                 timeout_ms: int = StlinkProtocol.USB_TIMEOUT_MS):
        self.device = device
        self.interface_number = interface_number
        self.endpoint_in = endpoint_in
        self.endpoint_out = endpoint_out
        self.timeout_ms = timeout_ms

    @classmethod
    def open(cls, device) -> 'UsbLink':
        """
        Claim the probe's bulk interface.

        Args:
            device: pyusb device returned by find_probes()

        Returns:
            UsbLink bound to the first interface with bulk endpoints

        Raises:
            DeviceException: If the device cannot be configured or claimed
        """
        try:
            try:
                config = device.get_active_configuration()
            except usb.core.USBError:
                config = None
            if config is None:
                device.set_configuration(1)
                config = device.get_active_configuration()

            for interface in config:
                ep_out = usb.util.find_descriptor(interface, custom_match=_is_bulk(usb.util.ENDPOINT_OUT))
                if ep_out is None:
                    continue
                ep_in = usb.util.find_descriptor(interface, custom_match=_is_bulk(usb.util.ENDPOINT_IN))
                if ep_in is None:
                    raise DeviceException('probe interface has no bulk IN endpoint')
                usb.util.claim_interface(device, interface.bInterfaceNumber)
                logger.debug(f"Probe interface {interface.bInterfaceNumber}, "
                             f"IN endpoint {ep_in.bEndpointAddress:#04x}, "
                             f"OUT endpoint {ep_out.bEndpointAddress:#04x}")
                return cls(device, interface.bInterfaceNumber,
                           ep_in.bEndpointAddress, ep_out.bEndpointAddress)
        except usb.core.USBError as e:
            logger.error(f"Error claiming probe: {e}")
            raise DeviceException(str(e))
        raise DeviceException('no probe interface with bulk endpoints found')

    def close(self) -> None:
        """Release the interface and free the device handle."""
        if self.device is None:
            return
        try:
            usb.util.release_interface(self.device, self.interface_number)
        finally:
            usb.util.dispose_resources(self.device)
            self.device = None
            logger.debug("Probe released")

    def _device(self):
        if self.device is None:
            raise TransportDisconnectedException('probe is closed')
        return self.device

    def send_frame(self, data: Sequence[int]) -> None:
        """Send a command or data packet, zero padded to 16 bytes."""
        device = self._device()
        try:
            device.write(self.endpoint_out, pad_frame(data), self.timeout_ms)
        except usb.core.USBError as e:
            raise _usb_error(e, self.timeout_ms / 1000)

    def receive_frame(self, length: int = StlinkProtocol.FRAME_SIZE,
                      timeout: Optional[float] = None) -> bytes:
        """Read up to length bytes from the IN endpoint."""
        device = self._device()
        timeout_ms = int(timeout * 1000) if timeout is not None else self.timeout_ms
        try:
            return bytes(device.read(self.endpoint_in, length, timeout_ms))
        except usb.core.USBError as e:
            raise _usb_error(e, timeout_ms / 1000)


def find_probes() -> List[Any]:
    """List attached ST-LINK probes."""
    devices = usb.core.find(
        find_all=True,
        idVendor=StlinkProtocol.USB_VID,
        custom_match=lambda d: d.idProduct in StlinkProtocol.USB_PID_LIST,
    )
    return list(devices or [])


def describe_probe(device) -> str:
    """Human readable one line description of a probe."""
    text = f"{device.idVendor:04x}:{device.idProduct:04x} bus {device.bus} address {device.address}"
    try:
        serial_number = usb.util.get_string(device, device.iSerialNumber)
    except (usb.core.USBError, ValueError, NotImplementedError):
        serial_number = None
    if serial_number:
        text += f" serial {serial_number}"
    return text


def open_probe(chooser: Optional[Callable[[List[Any]], Optional[Any]]] = None) -> UsbLink:
    """
    Find and claim an ST-LINK probe.

    Args:
        chooser: Called with the candidate list when more than one probe is
            attached; returns the one to use or None to give up

    Returns:
        UsbLink for the selected probe

    Raises:
        DeviceException: If no probe is found or none was chosen
    """
    try:
        candidates = find_probes()
    except usb.core.NoBackendError as e:
        raise DeviceException(f'no USB backend available: {e}')

    if not candidates:
        raise DeviceException('no ST-LINK probe found')
    if len(candidates) == 1:
        device = candidates[0]
    else:
        logger.info(f"Found {len(candidates)} probes")
        device = chooser(candidates) if chooser else None
        if device is None:
            raise DeviceException('no ST-LINK probe selected')

    logger.info(f"Using probe {describe_probe(device)}")
    return UsbLink.open(device)
