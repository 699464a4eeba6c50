from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Optional

from ..data_interface import DataInterface
from ..errors import CarError, InvalidCar
from ..ini_parser import Ini, get_mandatory_property, get_value, parse_int
from .base import IniFile

logger = logging.getLogger(__name__)

TYRES_INI = 'tyres.ini'


class TyresIni(IniFile):
    @classmethod
    def from_data_interface(cls, data_interface: DataInterface) -> 'TyresIni':
        return cls.load(data_interface, TYRES_INI)


def indexed_sections(ini: Ini, prefix: str) -> Dict[int, str]:
    """``FRONT`` is index 0, ``FRONT_<n>`` is index n; thermal and other suffixes are ignored."""
    found = {}
    pattern = re.compile(rf'{re.escape(prefix)}(?:_(\d+))?')
    for name in ini.section_names():
        match = pattern.fullmatch(name)
        if match:
            found[int(match.group(1) or 0)] = name
    return found


@dataclass
class TyreData:
    section_name: str
    name: str
    short_name: str
    width: float
    radius: float
    rim_radius: float

    @classmethod
    def from_ini(cls, section_name: str, ini: Ini) -> 'TyreData':
        if not ini.contains_section(section_name):
            raise InvalidCar(f"Missing section {section_name}", filename=TYRES_INI)
        return cls(
            section_name=section_name,
            name=get_value(ini, section_name, 'NAME') or section_name,
            short_name=get_value(ini, section_name, 'SHORT_NAME') or section_name[:1],
            width=get_mandatory_property(ini, section_name, 'WIDTH', float, TYRES_INI),
            radius=get_mandatory_property(ini, section_name, 'RADIUS', float, TYRES_INI),
            rim_radius=get_mandatory_property(ini, section_name, 'RIM_RADIUS', float, TYRES_INI),
        )


@dataclass
class TyreSet:
    front: TyreData
    rear: TyreData


@dataclass
class TyreCompounds:
    sets: Dict[int, TyreSet] = field(default_factory=dict)
    default_set_idx: Optional[int] = None

    @classmethod
    def load_from_parent(cls, parent: IniFile) -> 'TyreCompounds':
        """Sets with a missing or broken front/rear half are skipped."""
        ini = parent.ini
        compounds = cls()
        fronts = indexed_sections(ini, 'FRONT')
        rears = indexed_sections(ini, 'REAR')
        for idx in sorted(fronts):
            if idx not in rears:
                continue
            try:
                compounds.sets[idx] = TyreSet(TyreData.from_ini(fronts[idx], ini),
                                              TyreData.from_ini(rears[idx], ini))
            except CarError as exc:
                logger.warning("Couldn't parse tyre set. %s", exc)
        default_idx = get_value(ini, 'COMPOUND_DEFAULT', 'INDEX', parse_int)
        if default_idx is not None and 0 <= default_idx < len(compounds.sets):
            compounds.default_set_idx = default_idx
        return compounds

    def get_default_set(self) -> Optional[TyreSet]:
        if not self.sets:
            return None
        return self.sets.get(self.default_set_idx if self.default_set_idx is not None else 0)
