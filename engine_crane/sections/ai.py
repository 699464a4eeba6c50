from __future__ import annotations

from typing import Optional

from ..data_interface import DataInterface
from .base import IniFile
from .drivetrain import ShiftPoints

AI_INI = 'ai.ini'


class AiIni(IniFile):
    """``ai.ini``; plenty of cars ship without one."""

    @classmethod
    def from_data_interface(cls, data_interface: DataInterface) -> Optional['AiIni']:
        return cls.load_optional(data_interface, AI_INI)


class AiGears(ShiftPoints):
    SECTION_NAME = 'GEARS'
