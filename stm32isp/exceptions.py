"""
Exception classes for stm32isp.
"""

class STM32ISPException(Exception):
    """Base exception class for stm32isp."""
    def __init__(self, message):
        super().__init__(message)


class InvalidFlashRangeException(STM32ISPException):
    """Exception raised when an address is outside the valid flash range."""
    def __init__(self, value, def_range):
        message = f'Address {value:#010x} is not within valid range of {def_range[0]:#010x}:{def_range[1]:#010x}'
        super().__init__(message)


class InvalidNumberFormatException(STM32ISPException):
    """Exception raised when a number input is not in a valid format."""
    def __init__(self, value):
        message = f'Input \'{value}\' is not a valid number, it needs to be hex, dec or region name.'
        super().__init__(message)


class FileNotFoundException(STM32ISPException):
    """Exception raised when a firmware file is not found."""
    def __init__(self, value):
        message = f'Firmware file not found at {value}'
        super().__init__(message)


class FirmwareFormatException(STM32ISPException):
    """Exception raised when a firmware image cannot be decoded."""
    def __init__(self, message):
        super().__init__(f'Invalid firmware image: {message}')


class InvalidChunkSizeException(STM32ISPException):
    """Exception raised when a write chunk does not fit a single command."""
    def __init__(self, size, limit):
        super().__init__(f'Write chunk of {size} bytes must be between 1 and {limit} bytes')


class DeviceException(STM32ISPException):
    """Exception raised when a serial port or USB probe cannot be acquired."""
    def __init__(self, message):
        super().__init__(f'Device error: {message}')


class TransportDisconnectedException(STM32ISPException):
    """Exception raised when the link goes away in the middle of an operation."""
    def __init__(self, message):
        super().__init__(f'Connection lost: {message}')


class ResponseTimeoutException(STM32ISPException, TimeoutError):
    """Exception raised when the device does not answer in time."""
    def __init__(self, timeout):
        self.timeout = timeout
        super().__init__(f'No response within {int(timeout * 1000)} ms')


class UnexpectedResponseException(STM32ISPException):
    """Exception raised when the device answers with an unknown byte."""
    def __init__(self, value, expected=None):
        self.value = value
        message = f'Unexpected response {value:#04x}'
        if expected:
            message += f', expected {expected}'
        super().__init__(message)


class NackReceivedException(STM32ISPException):
    """Exception raised when the device rejects a command."""
    def __init__(self, command=None):
        self.command = command
        if command is None:
            super().__init__('Device answered NACK')
        else:
            super().__init__(f'Device answered NACK to command {command:#04x}')


class HandshakeFailedException(STM32ISPException):
    """Exception raised when handshake with the device fails."""
    def __init__(self, attempts=None, cause=None):
        self.cause = cause
        message = 'Failed to establish handshake with the device'
        if attempts:
            message += f' after {attempts} attempts'
        if cause:
            message += f': {cause}'
        super().__init__(message)


class GetIdFailedException(STM32ISPException):
    """Exception raised when the chip ID cannot be read."""
    def __init__(self, attempts=None, cause=None):
        self.cause = cause
        message = 'Failed to read the chip ID'
        if attempts:
            message += f' after {attempts} attempts'
        if cause:
            message += f': {cause}'
        super().__init__(message)


class DownloadCancelledException(STM32ISPException):
    """Exception raised at a chunk boundary once cancellation was requested."""
    def __init__(self, bytes_written=0, total_bytes=0):
        self.bytes_written = bytes_written
        self.total_bytes = total_bytes
        super().__init__(f'Download cancelled after {bytes_written} of {total_bytes} bytes')
