"""
Customisable gearing from ``setup.ini``.

Cars either expose one ``GEAR_<n>`` section per gear (each a ``RATIOS``
lut of name to ratio) or a list of ``GEAR_SET_<n>`` sections, selected
by ``GEARS.USE_GEARSET``. Either way ``FINAL_GEAR_RATIO`` may be present.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union

from ..data_interface import DataInterface
from ..errors import CarError, InvalidCar
from ..ini_parser import Ini, get_mandatory_property, get_value, parse_int, set_value
from ..lut_parser import LutFile, LutProperty
from .base import IniFile

SETUP_INI = 'setup.ini'
FINAL_GEAR_SECTION = 'FINAL_GEAR_RATIO'
GEAR_SET_PREFIX = 'GEAR_SET_'

_GEAR_NAMES = ['First', 'Second', 'Third', 'Fourth', 'Fifth',
               'Sixth', 'Seventh', 'Eighth', 'Ninth', 'Tenth']


class SetupIni(IniFile):
    @classmethod
    def from_data_interface(cls, data_interface: DataInterface) -> Optional['SetupIni']:
        return cls.load_optional(data_interface, SETUP_INI)


def sort_by_numeric_index(names: List[str]) -> List[str]:
    """Order section names by the digits they contain; names without digits sort first."""
    def index(name: str) -> int:
        digits = ''.join(c for c in name if c.isdigit())
        return int(digits) if digits else 0
    return sorted(names, key=index)


def create_gear_key(gear_index: int) -> str:
    return f"GEAR_{gear_index}"


def create_gear_name(gear_index: int) -> str:
    if 1 <= gear_index <= len(_GEAR_NAMES):
        return _GEAR_NAMES[gear_index - 1]
    return str(gear_index)


def _help_from_ini(raw: str) -> str:
    # quoted values are literal text, anything else is a help id
    if len(raw) >= 2 and raw[0] in '"\'' and raw[-1] == raw[0]:
        return raw[1:-1]
    return raw


@dataclass
class SingleGear:
    gear_id: str
    ratios_lut: LutProperty
    name: str
    menu_pos_x: float
    menu_pos_y: float
    help_data: str = ''
    help_is_text: bool = False

    @classmethod
    def new_gear(cls, gear_index: int, ratios: List[Tuple[str, float]]) -> 'SingleGear':
        gear_id = create_gear_key(gear_index)
        gear_name = create_gear_name(gear_index)
        return cls(
            gear_id=gear_id,
            ratios_lut=LutProperty(gear_id, 'RATIOS', LutFile(f"{gear_name.lower()}.rto", list(ratios))),
            name=f"{gear_name} gear",
            menu_pos_x=0.0,
            menu_pos_y=float(gear_index - 1),
            help_data='HELP_GEAR',
        )

    @classmethod
    def new_final_drive(cls, ratios: List[Tuple[str, float]]) -> 'SingleGear':
        return cls(
            gear_id=FINAL_GEAR_SECTION,
            ratios_lut=LutProperty(FINAL_GEAR_SECTION, 'RATIOS', LutFile('final.rto', list(ratios))),
            name='Final Gear Ratio',
            menu_pos_x=0.5,
            menu_pos_y=3.0,
            help_data='HELP_REAR_GEAR',
        )

    @classmethod
    def load_from_ini(cls, parent: IniFile, section_name: str) -> Optional['SingleGear']:
        ini, f = parent.ini, parent.filename
        if not ini.contains_section(section_name):
            return None
        try:
            ratios = LutProperty.mandatory_from_ini(section_name, 'RATIOS', ini, parent.data_interface,
                                                    key_type=str, value_type=float, filename=f)
        except CarError as exc:
            raise InvalidCar(f"Failed to load ratios file for {section_name}. {exc}", filename=f) from exc
        raw_help = get_mandatory_property(ini, section_name, 'HELP', str, f)
        return cls(
            gear_id=section_name,
            ratios_lut=ratios,
            name=get_mandatory_property(ini, section_name, 'NAME', str, f),
            menu_pos_x=get_mandatory_property(ini, section_name, 'POS_X', float, f),
            menu_pos_y=get_mandatory_property(ini, section_name, 'POS_Y', float, f),
            help_data=_help_from_ini(raw_help),
            help_is_text=raw_help[:1] in ('"', "'"),
        )

    @classmethod
    def load_all_from_parent(cls, parent: IniFile) -> List['SingleGear']:
        gears: List[SingleGear] = []
        index = 1
        while True:
            gear = cls.load_from_ini(parent, create_gear_key(index))
            if gear is None:
                break
            gears.append(gear)
            index += 1
        return gears

    @staticmethod
    def section_names(ini: Ini) -> List[str]:
        return sort_by_numeric_index([name for name in ini.sections_starting_with('GEAR_')
                                      if 'SET' not in name])

    @classmethod
    def delete_all_from_parent(cls, parent: IniFile) -> None:
        for name in cls.section_names(parent.ini):
            ratios = LutProperty.optional_from_ini(name, 'RATIOS', parent.ini, parent.data_interface,
                                                   key_type=str, value_type=float)
            if ratios is not None:
                ratios.delete_from_car_data(parent.ini, parent.data_interface)
            parent.ini.remove_section(name)

    def delete_from_parent(self, parent: IniFile) -> None:
        self.ratios_lut.delete_from_car_data(parent.ini, parent.data_interface)
        parent.ini.remove_section(self.gear_id)

    def get_index(self) -> Optional[int]:
        digits = self.gear_id[len('GEAR_'):] if self.gear_id.startswith('GEAR_') else ''
        return int(digits) if digits.isdigit() else None

    def ratios(self) -> List[Tuple[str, float]]:
        return [(str(name), float(ratio)) for name, ratio in self.ratios_lut.to_vec()]

    def deduce_gear_ratio_filename(self) -> str:
        if self.gear_id.startswith('FINAL'):
            return 'final'
        last = self.gear_id[-1:]
        if not last.isdigit():
            return 'Unknown'
        return create_gear_name(int(last))

    def help_value(self) -> str:
        return f'"{self.help_data}"' if self.help_is_text else self.help_data

    def update_car_data(self, parent: IniFile) -> None:
        self.ratios_lut.update_car_data(parent.ini, parent.data_interface)
        ini, s = parent.ini, self.gear_id
        set_value(ini, s, 'NAME', self.name)
        set_value(ini, s, 'POS_X', self.menu_pos_x)
        set_value(ini, s, 'POS_Y', self.menu_pos_y)
        set_value(ini, s, 'HELP', self.help_value())


@dataclass
class GearSet:
    name: str
    ratios: List[float] = field(default_factory=list)

    @staticmethod
    def section_names(ini: Ini) -> List[str]:
        return sort_by_numeric_index(ini.sections_starting_with(GEAR_SET_PREFIX))

    @classmethod
    def load_all_from_parent(cls, parent: IniFile) -> List['GearSet']:
        sets = []
        for section in cls.section_names(parent.ini):
            name = get_mandatory_property(parent.ini, section, 'NAME', str, parent.filename)
            ratios = []
            gear_idx = 1
            while True:
                ratio = get_value(parent.ini, section, create_gear_key(gear_idx), float)
                if ratio is None:
                    break
                ratios.append(ratio)
                gear_idx += 1
            sets.append(cls(name, ratios))
        return sets

    @classmethod
    def delete_all_from_ini(cls, ini: Ini) -> None:
        for section in cls.section_names(ini):
            ini.remove_section(section)

    def num_gears(self) -> int:
        return len(self.ratios)

    def update_ini(self, ini: Ini, as_index: int) -> None:
        section = f"{GEAR_SET_PREFIX}{as_index}"
        set_value(ini, section, 'NAME', self.name)
        for gear_idx, ratio in enumerate(self.ratios, start=1):
            set_value(ini, section, create_gear_key(gear_idx), ratio)


@dataclass
class PerGearConfig:
    gears: List[SingleGear]


@dataclass
class GearSetConfig:
    gear_sets: List[GearSet]


GearConfig = Union[PerGearConfig, GearSetConfig]


def load_gear_config(parent: IniFile) -> Optional[GearConfig]:
    gears = SingleGear.load_all_from_parent(parent)
    gear_sets = GearSet.load_all_from_parent(parent)
    if gears and gear_sets:
        if get_value(parent.ini, 'GEARS', 'USE_GEARSET', parse_int) == 1:
            return GearSetConfig(gear_sets)
        return PerGearConfig(gears)
    if gears:
        return PerGearConfig(gears)
    if gear_sets:
        return GearSetConfig(gear_sets)
    return None


def clear_gear_config(parent: IniFile) -> None:
    SingleGear.delete_all_from_parent(parent)
    GearSet.delete_all_from_ini(parent.ini)
    parent.ini.remove_section('GEARS')


@dataclass
class GearData:
    gear_config: Optional[GearConfig] = None
    final_drive: Optional[SingleGear] = None

    @classmethod
    def load_from_parent(cls, parent: IniFile) -> 'GearData':
        try:
            final_drive = SingleGear.load_from_ini(parent, FINAL_GEAR_SECTION)
            gear_config = load_gear_config(parent)
        except CarError as exc:
            raise InvalidCar(f"Failed to load gear info from {parent.filename}. {exc}") from exc
        return cls(gear_config, final_drive)

    def update_car_data(self, parent: IniFile) -> None:
        """Replaces every gear section; a config-less GearData leaves them alone."""
        if self.gear_config is not None:
            clear_gear_config(parent)
            if isinstance(self.gear_config, GearSetConfig):
                set_value(parent.ini, 'GEARS', 'USE_GEARSET', 1)
                for idx, gear_set in enumerate(self.gear_config.gear_sets):
                    gear_set.update_ini(parent.ini, idx)
            else:
                for gear in self.gear_config.gears:
                    gear.update_car_data(parent)
                set_value(parent.ini, 'GEARS', 'USE_GEARSET', 0)
        if self.final_drive is not None:
            self.final_drive.update_car_data(parent)
