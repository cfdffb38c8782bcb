"""
Test module for target address handling.
"""

import os
import sys
import unittest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from stm32isp.config import DEFAULT_TARGET
from stm32isp.exceptions import InvalidFlashRangeException, InvalidNumberFormatException
from stm32isp.target_helper import TargetHelper


class TestTargetHelper(unittest.TestCase):

    def setUp(self):
        self.helper = TargetHelper('STM32F103xB')

    def test_unknown_target_falls_back(self):
        helper = TargetHelper('STM32H7_does_not_exist')
        self.assertEqual(helper.target_name, DEFAULT_TARGET)

    def test_parse_address(self):
        self.assertEqual(self.helper.parse_address('0x08002000'), 0x08002000)
        self.assertEqual(self.helper.parse_address('0X08002000'), 0x08002000)
        self.assertEqual(self.helper.parse_address('134217728'), 0x08000000)
        self.assertEqual(self.helper.parse_address(' app '), 0x08002000)
        self.assertEqual(self.helper.parse_address('flash'), 0x08000000)

    def test_parse_address_invalid(self):
        with self.assertRaises(InvalidNumberFormatException):
            self.helper.parse_address('0xZZ')
        with self.assertRaises(InvalidNumberFormatException):
            self.helper.parse_address('sram')

    def test_check_image_range(self):
        self.assertTrue(self.helper.check_image_range(0x08000000, 0x20000))
        with self.assertRaises(InvalidFlashRangeException):
            self.helper.check_image_range(0x08000000, 0x20001)
        with self.assertRaises(InvalidFlashRangeException):
            self.helper.check_image_range(0x20000000)

    def test_check_image_range_names_last_address(self):
        with self.assertRaises(InvalidFlashRangeException) as ctx:
            self.helper.check_image_range(0x0801FF00, 0x200)
        self.assertIn('Address 0x080200ff', str(ctx.exception))


if __name__ == '__main__':
    unittest.main()
