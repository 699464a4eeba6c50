"""
Engine layout descriptors as Automation names them.

The game stores localisation ids such as ``EngBlock_V8_Name``; each type
maps those onto a variant plus a display string. Ids we don't recognise
are kept verbatim as an ``Unknown`` variant so nothing is lost when the
value is written back out.
"""

from __future__ import annotations

from typing import ClassVar, Dict, List, Tuple

UNKNOWN = 'Unknown'


class GameNamedVariant:
    """
    A closed set of variants plus ``Unknown(text)``.

    Subclasses list their variants in declaration order (that order is the
    on-disk variant index) along with the game id and display string of each.
    """

    VARIANTS: ClassVar[List[Tuple[str, str, str]]] = []

    __slots__ = ('variant', 'unknown_text')

    def __init__(self, variant: str, unknown_text: str = '') -> None:
        if variant != UNKNOWN and variant not in self._names():
            raise ValueError(f"{variant} isn't a {type(self).__name__} variant")
        self.variant = variant
        self.unknown_text = unknown_text if variant == UNKNOWN else ''

    @classmethod
    def _names(cls) -> List[str]:
        return [name for name, _, _ in cls.VARIANTS]

    @classmethod
    def from_game_name(cls, game_name: str) -> 'GameNamedVariant':
        for name, game_id, _ in cls.VARIANTS:
            if game_id and game_id == game_name:
                return cls(name)
        return cls(UNKNOWN, game_name)

    @classmethod
    def from_index(cls, index: int, unknown_text: str = '') -> 'GameNamedVariant':
        names = cls._names()
        if index == len(names):
            return cls(UNKNOWN, unknown_text)
        if not 0 <= index < len(names):
            raise ValueError(f"Invalid {cls.__name__} variant index {index}")
        return cls(names[index])

    @property
    def index(self) -> int:
        names = self._names()
        return len(names) if self.variant == UNKNOWN else names.index(self.variant)

    @property
    def is_unknown(self) -> bool:
        return self.variant == UNKNOWN

    def __str__(self) -> str:
        if self.is_unknown:
            return self.unknown_text
        for name, _, display in self.VARIANTS:
            if name == self.variant:
                return display
        return self.variant

    def __repr__(self) -> str:
        if self.is_unknown:
            return f"{type(self).__name__}.Unknown({self.unknown_text!r})"
        return f"{type(self).__name__}.{self.variant}"

    def __eq__(self, other: object) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return self.variant == other.variant and self.unknown_text == other.unknown_text

    def __hash__(self) -> int:
        return hash((type(self).__name__, self.variant, self.unknown_text))


class BlockConfig(GameNamedVariant):
    VARIANTS = [
        ('V16_90', 'EngBlock_V16_Name', '90° V16'),
        ('V10_90', 'EngBlock_V10_Name', '90° V10'),
        ('V8_90', 'EngBlock_V8_Name', '90° V8'),
        ('V6_90', 'EngBlock_V6_V90_Name', '90° V6'),
        ('V12_60', 'EngBlock_V12_Name', '60° V12'),
        ('V8_60', 'EngBlock_V8_V60_Name', '60° V8'),
        ('V6_60', 'EngBlock_V6_Name', '60° V6'),
        ('I6', 'EngBlock_Inl6_Name', 'Inline 6'),
        ('I5', 'EngBlock_Inl5_Name', 'Inline 5'),
        ('I4', 'EngBlock_Inl4_Name', 'Inline 4'),
        ('I3', 'EngBlock_Inl3_Name', 'Inline 3'),
        ('Boxer6', 'EngBlock_Box6_Name', 'Boxer 6'),
        ('Boxer4', 'EngBlock_Box4_Name', 'Boxer 4'),
    ]

    _CYLINDERS: ClassVar[Dict[str, int]] = {
        'V16_90': 16, 'V10_90': 10, 'V8_90': 8, 'V6_90': 6,
        'V12_60': 12, 'V8_60': 8, 'V6_60': 6,
        'I6': 6, 'I5': 5, 'I4': 4, 'I3': 3,
        'Boxer6': 6, 'Boxer4': 4,
    }

    def cylinders(self) -> int:
        return self._CYLINDERS.get(self.variant, 0)

    def block_type(self) -> 'BlockType':
        if self.variant.startswith('V'):
            return BlockType('V')
        if self.variant.startswith('I'):
            return BlockType('Inline')
        if self.variant.startswith('Boxer'):
            return BlockType('Boxer')
        return BlockType(UNKNOWN, self.unknown_text)


class BlockType(GameNamedVariant):
    """
    Cylinder arrangement; rendered so that ``f"{block_type}{cylinders}"`` reads ``V8``.
    The game has no id for these, they're derived from a BlockConfig.
    """

    VARIANTS = [
        ('Inline', '', 'I'),
        ('V', '', 'V'),
        ('Boxer', '', 'B'),
    ]


class HeadConfig(GameNamedVariant):
    VARIANTS = [
        ('OHV', 'Head_PushRod_Name', 'OHV'),
        ('SOHC', 'Head_OHC_Name', 'SOHC'),
        ('DAOHC', 'Head_DirectOHC_Name', 'DAOHC'),
        ('DOHC', 'Head_DuelOHC_Name', 'DOHC'),
    ]


class Valves(GameNamedVariant):
    VARIANTS = [
        ('Two', 'ValveCount_2_Name', '2v'),
        ('Three', 'ValveCount_3_Name', '3v'),
        ('Four', 'ValveCount_4_Name', '4v'),
        ('Five', 'ValveCount_5_Name', '5v'),
    ]

    @classmethod
    def from_int(cls, count: int) -> 'Valves':
        return cls.from_game_name(f"ValveCount_{count}_Name") if 2 <= count <= 5 else cls(UNKNOWN, str(count))


class AspirationType(GameNamedVariant):
    VARIANTS = [
        ('NA', 'Aspiration_Natural_Name', 'Naturally Aspirated'),
        ('Turbo', 'Aspiration_Turbo_Name', 'Turbocharged'),
    ]
