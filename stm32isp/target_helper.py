"""
Target helper module for stm32isp.
Parses address arguments and checks images against a target's flash range.
"""

import logging

from .config import DEFAULT_TARGET, TARGET_DEFS
from .exceptions import InvalidFlashRangeException, InvalidNumberFormatException

logger = logging.getLogger(__name__)


class TargetHelper:
    """Flash layout of one target MCU."""

    def __init__(self, target_name: str = DEFAULT_TARGET):
        """
        Args:
            target_name: Key of TARGET_DEFS; unknown names fall back to DEFAULT_TARGET
        """
        if target_name not in TARGET_DEFS:
            logger.warning(f'Unknown target {target_name}, using {DEFAULT_TARGET}')
            target_name = DEFAULT_TARGET
        self.target_name = target_name
        self.defs = TARGET_DEFS[target_name]
        self.flash_first, self.flash_last = self.defs['flash_range']

    def check_image_range(self, base_address: int, size: int = 0) -> bool:
        """
        Check that an image of size bytes at base_address lies inside flash.

        Raises:
            InvalidFlashRangeException: Naming the first offending address
        """
        last_address = base_address + max(size, 1) - 1
        for address in (base_address, last_address):
            if not self.flash_first <= address <= self.flash_last:
                raise InvalidFlashRangeException(address, self.defs['flash_range'])
        return True

    def parse_address(self, text: str) -> int:
        """
        Turn a command-line address into an integer.

        Accepts a region name of the target (e.g. 'app'), a 0x-prefixed hex
        number or a decimal number.

        Raises:
            InvalidNumberFormatException: If text is none of those
        """
        text = text.strip()
        regions = self.defs['region']
        if text in regions:
            return regions[text]

        base = 16 if text[:2].lower() == '0x' else 10
        try:
            return int(text, base)
        except ValueError:
            raise InvalidNumberFormatException(text)
