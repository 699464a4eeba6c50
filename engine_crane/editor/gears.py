"""
Gear ratio editing.

A car's gearing is edited in one of three shapes: fixed (the drivetrain
ratios and nothing else), gear sets (whole named sets of ratios the
player picks from in the setup menu) and fully customizable (a choice
of ratios per gear). Each shape carries a ``FinalDrive``. The models
only hold edits; ``apply_to_car`` writes ``drivetrain.ini`` and
``setup.ini`` in one go.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from ..car import Car
from ..errors import ArgumentError, CarError, InvalidUpdate
from ..numeric import format_number
from ..sections.base import extract_mandatory_section
from ..sections.drivetrain import DrivetrainIni, Gearbox
from ..sections.setup import (SETUP_INI, GearData, GearSet, GearSetConfig, PerGearConfig, SetupIni,
                              SingleGear, clear_gear_config, create_gear_name)

logger = logging.getLogger(__name__)

MAX_GEARS = 10
FALLBACK_FINAL_DRIVE = 3.0


class GearConfigType(enum.Enum):
    FIXED = 'Fixed'
    GEAR_SETS = 'GearSets'
    PER_GEAR = 'PerGearConfig'

    def __str__(self) -> str:
        return _CONFIG_TYPE_NAMES[self]


_CONFIG_TYPE_NAMES = {
    GearConfigType.FIXED: "Fixed Gearing",
    GearConfigType.GEAR_SETS: "Gear Sets",
    GearConfigType.PER_GEAR: "Fully Customizable",
}


@dataclass
class RatioEntry:
    idx: int
    name: str
    ratio: float


class RatioSet:
    """
    Named ratios keyed by a stable index, with an optional default.

    Indices are never reused so a caller can hold on to one while other
    entries come and go. ``entries`` is ordered by ratio.
    """

    def __init__(self) -> None:
        self._entries: Dict[int, RatioEntry] = {}
        self._max_name_length = 0
        self._next_idx = 0
        self._default_idx: Optional[int] = None

    def __len__(self) -> int:
        return len(self._entries)

    def max_name_len(self) -> int:
        return self._max_name_length

    def entries(self) -> List[RatioEntry]:
        return sorted(self._entries.values(), key=lambda e: e.ratio)

    def insert(self, ratio_name: str, ratio: float) -> int:
        self._max_name_length = max(self._max_name_length, len(ratio_name))
        idx = self._next_idx
        self._next_idx += 1
        self._entries[idx] = RatioEntry(idx, ratio_name, ratio)
        return idx

    def remove(self, idx: int) -> bool:
        removed = self._entries.pop(idx, None)
        if removed is None:
            return False
        if self._default_idx == idx:
            self._default_idx = None
        if len(removed.name) == self._max_name_length:
            self._max_name_length = max((len(e.name) for e in self._entries.values()), default=0)
        return True

    def update_ratio_name(self, idx: int, new_name: str) -> None:
        entry = self._entries.get(idx)
        if entry is not None:
            entry.name = new_name
            self._max_name_length = max((len(e.name) for e in self._entries.values()), default=0)

    def update_ratio_value(self, idx: int, new_value: float) -> None:
        entry = self._entries.get(idx)
        if entry is not None:
            entry.ratio = new_value

    def default_idx(self) -> Optional[int]:
        return self._default_idx

    def default_ratio(self) -> Optional[RatioEntry]:
        if self._default_idx is None:
            return None
        return self._entries.get(self._default_idx)

    def set_default(self, idx: int) -> None:
        if idx not in self._entries:
            raise ArgumentError(f"Index {idx} doesn't exist")
        self._default_idx = idx

    def selected_ratio(self) -> Optional[float]:
        """The default ratio, or the lowest one when no default is set."""
        entry = self.default_ratio()
        if entry is None:
            entries = self.entries()
            entry = entries[0] if entries else None
        return None if entry is None else entry.ratio

    def to_pairs(self) -> List[Tuple[str, float]]:
        return [(e.name, e.ratio) for e in self.entries()]

    @classmethod
    def from_pairs(cls, pairs: List[Tuple[str, float]], default_ratio: Optional[float] = None) -> 'RatioSet':
        ratio_set = cls()
        for name, ratio in pairs:
            idx = ratio_set.insert(name, ratio)
            if default_ratio is not None and ratio == default_ratio:
                ratio_set.set_default(idx)
        return ratio_set

    def __repr__(self) -> str:
        return f"RatioSet({self.to_pairs()!r}, default={self._default_idx})"


def _ratio_name(name: str, ratio: float) -> str:
    return name if name else format_number(ratio)


class FinalDrive:
    """
    The drivetrain's ``FINAL`` ratio plus any final drive choices offered
    in ``setup.ini``. With a single choice the setup section is dropped.
    """

    def __init__(self, current_final_drive: float, setup_data: Optional[SingleGear] = None) -> None:
        self.current_final_drive = current_final_drive
        self.setup_data = setup_data
        if setup_data is None:
            self.ratio_set = RatioSet.from_pairs([('DEFAULT', current_final_drive)], current_final_drive)
        else:
            self.ratio_set = RatioSet.from_pairs(setup_data.ratios(), current_final_drive)

    def add_ratio(self, name: str, ratio: float) -> int:
        return self.ratio_set.insert(_ratio_name(name, ratio), ratio)

    def remove_ratio(self, idx: int) -> bool:
        return self.ratio_set.remove(idx)

    def set_default(self, idx: int) -> None:
        self.ratio_set.set_default(idx)

    def selected_ratio(self) -> float:
        ratio = self.ratio_set.selected_ratio()
        return FALLBACK_FINAL_DRIVE if ratio is None else ratio

    def apply_drivetrain_changes(self, gearbox: Gearbox) -> None:
        gearbox.update_final_drive(self.selected_ratio())

    def apply_setup_changes(self, setup: SetupIni, gear_data: GearData) -> None:
        if len(self.ratio_set) <= 1:
            if gear_data.final_drive is not None:
                gear_data.final_drive.delete_from_parent(setup)
            gear_data.final_drive = None
            return
        if gear_data.final_drive is None:
            gear_data.final_drive = SingleGear.new_final_drive(self.ratio_set.to_pairs())
        else:
            gear_data.final_drive.ratios_lut.update(self.ratio_set.to_pairs())


class GearConfiguration:
    """Common behaviour of the three gearing shapes."""

    config_type: GearConfigType

    def __init__(self, current_drivetrain_data: List[float], final_drive: FinalDrive) -> None:
        self.current_drivetrain_data = list(current_drivetrain_data)
        self.final_drive = final_drive

    def get_config_type(self) -> GearConfigType:
        return self.config_type

    def drivetrain_ratios(self) -> List[float]:
        raise NotImplementedError

    def update_setup(self, setup: SetupIni, gear_data: GearData) -> None:
        raise NotImplementedError

    def needs_setup_file(self) -> bool:
        return self.config_type is not GearConfigType.FIXED or len(self.final_drive.ratio_set) > 1

    def apply_to_car(self, car_path: Path) -> None:
        ratios = self.drivetrain_ratios()
        if not ratios:
            raise InvalidUpdate("Can't write a gearbox with no gears")
        car = Car.load_from_path(car_path)

        drivetrain = DrivetrainIni.from_data_interface(car.data_interface)
        gearbox = extract_mandatory_section(Gearbox, drivetrain)
        gearbox.update_gears(ratios)
        self.final_drive.apply_drivetrain_changes(gearbox)
        gearbox.update_car_data(drivetrain)
        logger.info("Writing %s with %s gears", drivetrain.filename, gearbox.num_gears())
        drivetrain.write()

        setup = SetupIni.from_data_interface(car.data_interface)
        if setup is None:
            if not self.needs_setup_file():
                return
            setup = SetupIni(car.data_interface, SETUP_INI)
        gear_data = GearData.load_from_parent(setup)
        self.update_setup(setup, gear_data)
        self.final_drive.apply_setup_changes(setup, gear_data)
        gear_data.update_car_data(setup)
        logger.info("Writing %s", setup.filename)
        setup.write()


def _check_gear_index(gear_idx: int, num_gears: int) -> None:
    if not 0 <= gear_idx < num_gears:
        raise ArgumentError(f"No gear with index {gear_idx}")


class FixedGears(GearConfiguration):
    """
    Gear ratios with no setup choices. ``updated`` holds one slot per
    gear; ``None`` keeps the car's current ratio for that gear.
    """

    config_type = GearConfigType.FIXED

    def __init__(self, current_drivetrain_data: List[float], final_drive: FinalDrive,
                 updated: Optional[List[Optional[float]]] = None) -> None:
        super().__init__(current_drivetrain_data, final_drive)
        self.updated: List[Optional[float]] = (list(updated) if updated is not None
                                               else [None] * len(self.current_drivetrain_data))

    def add_gear(self) -> None:
        if len(self.updated) >= MAX_GEARS:
            raise InvalidUpdate(f"Can't have more than {MAX_GEARS} gears")
        self.updated.append(None)

    def remove_gear(self) -> None:
        if self.updated:
            self.updated.pop()

    def update_ratio(self, gear_idx: int, ratio: Optional[float]) -> None:
        _check_gear_index(gear_idx, len(self.updated))
        self.updated[gear_idx] = ratio

    def drivetrain_ratios(self) -> List[float]:
        ratios = []
        for gear_idx, ratio in enumerate(self.updated):
            if ratio is None:
                if gear_idx >= len(self.current_drivetrain_data):
                    raise InvalidUpdate(f"Gear {gear_idx + 1} has no ratio")
                ratio = self.current_drivetrain_data[gear_idx]
            ratios.append(ratio)
        return ratios

    def update_setup(self, setup: SetupIni, gear_data: GearData) -> None:
        clear_gear_config(setup)
        gear_data.gear_config = None


@dataclass(frozen=True, order=True)
class GearsetLabel:
    idx: int
    name: str = field(compare=False)

    def __str__(self) -> str:
        return self.name


class GearSets(GearConfiguration):
    """Named sets of ratios; the default set is what ``drivetrain.ini`` gets."""

    config_type = GearConfigType.GEAR_SETS

    def __init__(self, current_drivetrain_data: List[float], final_drive: FinalDrive,
                 gear_sets: List[GearSet]) -> None:
        super().__init__(current_drivetrain_data, final_drive)
        self.current_setup_data = list(gear_sets)
        self.updated: Dict[GearsetLabel, List[Optional[float]]] = {}
        self.default_gearset: Optional[GearsetLabel] = None
        for set_idx, gear_set in enumerate(self.current_setup_data):
            label = GearsetLabel(set_idx, gear_set.name)
            self.updated[label] = [None] * gear_set.num_gears()
            if self.default_gearset is None and gear_set.ratios == self.current_drivetrain_data:
                self.default_gearset = label

    def labels(self) -> List[GearsetLabel]:
        return sorted(self.updated)

    def _label(self, set_idx: int) -> GearsetLabel:
        for label in self.updated:
            if label.idx == set_idx:
                return label
        raise ArgumentError(f"No gear set with index {set_idx}")

    def add_gear(self) -> None:
        for ratios in self.updated.values():
            if len(ratios) >= MAX_GEARS:
                raise InvalidUpdate(f"Can't have more than {MAX_GEARS} gears")
        for ratios in self.updated.values():
            ratios.append(None)

    def remove_gear(self) -> None:
        for ratios in self.updated.values():
            if ratios:
                ratios.pop()

    def update_ratio(self, set_idx: int, gear_idx: int, ratio: Optional[float]) -> None:
        ratios = self.updated[self._label(set_idx)]
        _check_gear_index(gear_idx, len(ratios))
        ratios[gear_idx] = ratio

    def set_default(self, set_idx: int) -> None:
        self.default_gearset = self._label(set_idx)

    def add_gear_set(self, name: str, ratios: List[float]) -> GearsetLabel:
        # labels index current_setup_data, which only ever grows
        label = GearsetLabel(len(self.current_setup_data), name)
        self.current_setup_data.append(GearSet(name, list(ratios)))
        self.updated[label] = [None] * len(ratios)
        return label

    def remove_gear_set(self, set_idx: int) -> None:
        label = self._label(set_idx)
        del self.updated[label]
        if self.default_gearset == label:
            self.default_gearset = None

    def gear_set_ratios(self, label: GearsetLabel) -> List[float]:
        current = self.current_setup_data[label.idx].ratios if label.idx < len(self.current_setup_data) else []
        ratios = []
        for gear_idx, ratio in enumerate(self.updated[label]):
            if ratio is None:
                if gear_idx >= len(current):
                    raise InvalidUpdate(f"Gear {gear_idx + 1} of gear set {label} has no ratio")
                ratio = current[gear_idx]
            ratios.append(ratio)
        return ratios

    def gear_sets(self) -> List[GearSet]:
        return [GearSet(label.name, self.gear_set_ratios(label)) for label in self.labels()]

    def drivetrain_ratios(self) -> List[float]:
        labels = self.labels()
        if not labels:
            raise InvalidUpdate("No gear sets defined")
        label = self.default_gearset if self.default_gearset is not None else labels[0]
        return self.gear_set_ratios(label)

    def update_setup(self, setup: SetupIni, gear_data: GearData) -> None:
        gear_data.gear_config = GearSetConfig(self.gear_sets())


class CustomizableGears(GearConfiguration):
    """One ``RatioSet`` per gear, keyed by the 1-based gear number."""

    config_type = GearConfigType.PER_GEAR

    def __init__(self, current_drivetrain_data: List[float], final_drive: FinalDrive,
                 gears: Optional[List[SingleGear]] = None) -> None:
        super().__init__(current_drivetrain_data, final_drive)
        self.current_setup_data: Dict[int, SingleGear] = {}
        self.gears: Dict[int, RatioSet] = {}
        for position, gear in enumerate(gears or []):
            gear_number = gear.get_index() or position + 1
            self.current_setup_data[gear_number] = gear
            default = (self.current_drivetrain_data[gear_number - 1]
                       if gear_number <= len(self.current_drivetrain_data) else None)
            self.gears[gear_number] = RatioSet.from_pairs(gear.ratios(), default)

    def gear_numbers(self) -> List[int]:
        return sorted(self.gears)

    def gear_label(self, gear_number: int) -> str:
        return f"{create_gear_name(gear_number)} gear"

    def _ratio_set(self, gear_number: int) -> RatioSet:
        try:
            return self.gears[gear_number]
        except KeyError:
            raise ArgumentError(f"No gear {gear_number}") from None

    def add_gear(self) -> int:
        next_number = max(self.gears, default=0) + 1
        if next_number > MAX_GEARS:
            raise InvalidUpdate(f"Can't have more than {MAX_GEARS} gears")
        self.gears[next_number] = RatioSet()
        return next_number

    def remove_gear(self) -> None:
        if self.gears:
            del self.gears[max(self.gears)]

    def add_ratio(self, gear_number: int, name: str, ratio: float) -> int:
        return self._ratio_set(gear_number).insert(_ratio_name(name, ratio), ratio)

    def remove_ratio(self, gear_number: int, ratio_idx: int) -> bool:
        return self._ratio_set(gear_number).remove(ratio_idx)

    def set_default_ratio(self, gear_number: int, ratio_idx: int) -> None:
        self._ratio_set(gear_number).set_default(ratio_idx)

    def drivetrain_ratios(self) -> List[float]:
        ratios = []
        for gear_number in self.gear_numbers():
            ratio = self.gears[gear_number].selected_ratio()
            if ratio is None:
                raise InvalidUpdate(f"{self.gear_label(gear_number)} has no ratios")
            ratios.append(ratio)
        return ratios

    def update_setup(self, setup: SetupIni, gear_data: GearData) -> None:
        single_gears = []
        for gear_number in self.gear_numbers():
            pairs = self.gears[gear_number].to_pairs()
            existing = self.current_setup_data.get(gear_number)
            if existing is not None and existing.ratios_lut.num_entries():
                existing.ratios_lut.update(pairs)
                single_gears.append(existing)
            else:
                single_gears.append(SingleGear.new_gear(gear_number, pairs))
        gear_data.gear_config = PerGearConfig(single_gears)


def gear_configuration_builder(car_path: Path) -> GearConfiguration:
    """Build the editor model matching how ``car_path`` currently exposes its gearing."""
    car_path = Path(car_path)
    try:
        car = Car.load_from_path(car_path)
    except CarError as exc:
        logger.error("Failed to load %s. %s", car_path, exc)
        raise
    try:
        drivetrain = DrivetrainIni.from_data_interface(car.data_interface)
        gearbox = extract_mandatory_section(Gearbox, drivetrain)
    except CarError as exc:
        raise InvalidUpdate(f"Failed to load Gearbox data from {car_path}. {exc}") from exc

    gear_data = GearData()
    try:
        setup = SetupIni.from_data_interface(car.data_interface)
    except CarError as exc:
        logger.warning("Failed to load %s. %s", car_path / SETUP_INI, exc)
        setup = None
    if setup is not None:
        gear_data = GearData.load_from_parent(setup)

    final_drive = FinalDrive(gearbox.final_drive(), gear_data.final_drive)
    if isinstance(gear_data.gear_config, GearSetConfig):
        return GearSets(gearbox.gear_ratios, final_drive, gear_data.gear_config.gear_sets)
    if isinstance(gear_data.gear_config, PerGearConfig):
        return CustomizableGears(gearbox.gear_ratios, final_drive, gear_data.gear_config.gears)
    return FixedGears(gearbox.gear_ratios, final_drive)


def _lossy(source: GearConfiguration, target: GearConfigType, reason: str) -> InvalidUpdate:
    return InvalidUpdate(f"Converting {source.get_config_type()} to {target} would lose data. {reason}")


def convert_gear_configuration(config: GearConfiguration, to: GearConfigType,
                               allow_lossy: bool = False) -> GearConfiguration:
    """
    Re-express ``config`` in another shape, keeping its final drive.

    Conversions that keep every ratio always succeed. One that would drop
    choices raises InvalidUpdate unless ``allow_lossy`` is set, in which
    case only the selected ratios survive.
    """
    from_type = config.get_config_type()
    if from_type is to:
        raise ArgumentError(f"Config is already of type {to}")
    ratios = config.drivetrain_ratios()
    drivetrain = config.current_drivetrain_data
    final_drive = config.final_drive

    if isinstance(config, GearSets):
        gear_sets = config.gear_sets()
        if len(gear_sets) > 1 and not allow_lossy:
            raise _lossy(config, to, f"{len(gear_sets)} gear sets defined")
        if to is GearConfigType.FIXED:
            return FixedGears(drivetrain, final_drive, list(ratios))
        per_gear = [SingleGear.new_gear(n, [(_ratio_name('', r), r)]) for n, r in enumerate(ratios, start=1)]
        return CustomizableGears(ratios, final_drive, per_gear)

    if isinstance(config, CustomizableGears):
        crowded = [n for n in config.gear_numbers() if len(config.gears[n]) > 1]
        if crowded and not allow_lossy:
            raise _lossy(config, to, f"gears {crowded} have more than one ratio")
        if to is GearConfigType.FIXED:
            return FixedGears(drivetrain, final_drive, list(ratios))
        converted = GearSets(ratios, final_drive, [GearSet('Default', list(ratios))])
        converted.set_default(0)
        return converted

    if to is GearConfigType.GEAR_SETS:
        converted = GearSets(ratios, final_drive, [GearSet('Default', list(ratios))])
        converted.set_default(0)
        return converted
    per_gear = [SingleGear.new_gear(n, [(_ratio_name('', r), r)]) for n, r in enumerate(ratios, start=1)]
    return CustomizableGears(ratios, final_drive, per_gear)
