"""
Test module for Intel HEX decoding and firmware loading.
"""

import os
import sys
import tempfile
import unittest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from stm32isp.config import DEFAULT_BASE_ADDRESS
from stm32isp.exceptions import FileNotFoundException, FirmwareFormatException
from stm32isp.hexfile import FirmwareImage, decode_hex, load_firmware


DATA_16 = bytes(range(1, 17))


def data_record(address: int, data: bytes, checksum: str = 'CC') -> str:
    return f':{len(data):02X}{address:04X}00{data.hex().upper()}{checksum}'


class TestDecodeHex(unittest.TestCase):
    """Test cases for decode_hex."""

    def test_linear_extension_sets_base(self):
        text = '\n'.join([':020000040800F2', data_record(0, DATA_16), ':00000001FF'])
        image = decode_hex(text)
        self.assertEqual(image.base_address, 0x08000000)
        self.assertEqual(image.size, 16)
        self.assertEqual(image.data, DATA_16)
        self.assertIsInstance(image, FirmwareImage)

    def test_segment_extension(self):
        text = '\n'.join([':020000021000EC', data_record(0x0010, b'\xAA')])
        image = decode_hex(text)
        self.assertEqual(image.base_address, 0x10010)

    def test_gap_filled_with_erased_value(self):
        text = '\n'.join([data_record(0x0000, b'\x01\x02'), data_record(0x0010, b'\x03')])
        image = decode_hex(text)
        self.assertEqual(image.size, 0x11)
        self.assertEqual(len(image.data), image.size)
        self.assertEqual(image.data[:2], b'\x01\x02')
        self.assertEqual(image.data[2:0x10], b'\xFF' * 14)
        self.assertEqual(image.data[0x10], 0x03)

    def test_last_write_wins(self):
        text = '\n'.join([data_record(0x0100, b'\x11\x22'), data_record(0x0101, b'\x33')])
        image = decode_hex(text)
        self.assertEqual(image.data, b'\x11\x33')

    def test_checksum_not_verified(self):
        image = decode_hex(data_record(0x0000, b'\x42', checksum='00'))
        self.assertEqual(image.data, b'\x42')

    def test_unknown_and_start_records_ignored(self):
        text = '\n'.join([':0400000508000131BD', ':0100000612E7', data_record(0, b'\x01')])
        image = decode_hex(text)
        self.assertEqual(image.data, b'\x01')

    def test_windows_line_endings_and_blank_lines(self):
        text = ':020000040800F2\r\n\r\n' + data_record(4, b'\x05') + '\r\n:00000001FF\r\n'
        image = decode_hex(text)
        self.assertEqual(image.base_address, 0x08000004)

    def test_count_longer_than_line_reads_missing_bytes_as_zero(self):
        text = ':020000040800F2\n:1000000001020304CC\n:00000001FF'
        image = decode_hex(text)
        self.assertEqual(image.base_address, 0x08000000)
        self.assertEqual(image.size, 16)
        self.assertEqual(image.data, b'\x01\x02\x03\x04\xCC' + b'\x00' * 11)

    def test_count_shorter_than_line_reads_declared_bytes_only(self):
        text = '\n'.join([':020000040800F2', ':0200000011223344AA'])
        image = decode_hex(text)
        self.assertEqual(image.base_address, 0x08000000)
        self.assertEqual(image.size, 2)
        self.assertEqual(image.data, b'\x11\x22')

    def test_no_records(self):
        with self.assertRaises(FirmwareFormatException):
            decode_hex('not a hex file\n0102')
        with self.assertRaises(FirmwareFormatException):
            decode_hex('')

    def test_no_data(self):
        with self.assertRaises(FirmwareFormatException):
            decode_hex(':020000040800F2\n:00000001FF\n')

    def test_invalid_digits(self):
        with self.assertRaises(FirmwareFormatException):
            decode_hex(':0100000ZZ1EE')


class TestLoadFirmware(unittest.TestCase):
    """Test cases for load_firmware."""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()

    def tearDown(self):
        self.tmpdir.cleanup()

    def _write(self, name, content, mode='wb'):
        path = os.path.join(self.tmpdir.name, name)
        with open(path, mode) as f:
            f.write(content)
        return path

    def test_binary_default_base(self):
        path = self._write('firmware.bin', b'\x00\x01\x02')
        image = load_firmware(path)
        self.assertEqual(image, FirmwareImage(b'\x00\x01\x02', DEFAULT_BASE_ADDRESS, 3))

    def test_binary_custom_base(self):
        path = self._write('firmware.bin', b'\x00' * 8)
        image = load_firmware(path, 0x08002000)
        self.assertEqual(image.base_address, 0x08002000)

    def test_hex_file(self):
        path = self._write('firmware.HEX', ':020000040800F2\n' + data_record(0, DATA_16) + '\n', mode='w')
        image = load_firmware(path, 0x08002000)
        self.assertEqual(image.base_address, 0x08000000)
        self.assertEqual(image.data, DATA_16)

    def test_missing_file(self):
        with self.assertRaises(FileNotFoundException):
            load_firmware(os.path.join(self.tmpdir.name, 'missing.bin'))

    def test_empty_binary(self):
        path = self._write('empty.bin', b'')
        with self.assertRaises(FirmwareFormatException):
            load_firmware(path)


if __name__ == '__main__':
    unittest.main()
