"""
Installed AC cars: loading, cloning into a new spec and the renames a clone needs.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import List, Optional

from . import config
from .acd import ACD_FILENAME, AcdArchive
from .data_interface import DataInterface, open_data_interface
from .errors import AcdError, ArgumentError, CarAlreadyExists, CarError, InvalidCar, NoSuchCar, NotInstalled
from .ini_parser import Ini, get_value, set_value
from .sections.car_ini import CarIniData
from .sfx import update_car_sfx
from .ui_json import UiInfo

logger = logging.getLogger(__name__)

ENGINE_CRANE_CAR_TAG = 'engine crane'
_RENAMED_SUFFIXES = ('.kn5', '.bank')


class Car:
    """A car folder plus the data interface over its physics files."""

    def __init__(self, root_path: Path, data_interface: DataInterface) -> None:
        self.root_path = Path(root_path)
        self.data_interface = data_interface

    @classmethod
    def load_from_path(cls, car_folder_path: Path) -> 'Car':
        car_folder_path = Path(car_folder_path)
        if not car_folder_path.is_dir():
            raise NoSuchCar(str(car_folder_path))
        return cls(car_folder_path, open_data_interface(car_folder_path))

    @property
    def folder_name(self) -> str:
        return self.root_path.name

    def __repr__(self) -> str:
        return f"Car({self.root_path})"


def list_installed_cars(cars_dir: Optional[Path] = None) -> List[Path]:
    cars_dir = Path(cars_dir) if cars_dir is not None else config.ac_cars_path()
    if not cars_dir.is_dir():
        raise NotInstalled(f"No AC cars directory at {cars_dir}")
    return sorted(p for p in cars_dir.iterdir() if p.is_dir())


def delete_data_acd_file(car_path: Path) -> None:
    acd_path = Path(car_path) / ACD_FILENAME
    if acd_path.exists():
        acd_path.unlink()


def fix_car_specific_filenames(car_path: Path, name_to_change: str) -> None:
    """
    Rename ``<old name>*.kn5`` / ``*.bank`` files after the car folder and
    point every ``LOD_<i>.FILE`` in ``lods.ini`` at the renamed models.
    """
    car_path = Path(car_path)
    new_car_name = car_path.name
    to_rename = []
    for path in sorted(car_path.rglob('*')):
        if not path.is_file():
            continue
        if path.name.startswith(name_to_change) and path.suffix in _RENAMED_SUFFIXES:
            to_rename.append(path)
        elif path.name == 'lods.ini':
            _update_lods_ini(path, name_to_change, new_car_name)
    for path in to_rename:
        new_name = new_car_name + path.name[len(name_to_change):]
        logger.info("Changing %s to %s", path, new_name)
        path.rename(path.with_name(new_name))


def _update_lods_ini(path: Path, old_name: str, new_name: str) -> None:
    lods = Ini.load_from_file(path)
    idx = 0
    while lods.section_contains_property(f"LOD_{idx}", 'FILE'):
        section = f"LOD_{idx}"
        logger.info("Updating %s", section)
        set_value(lods, section, 'FILE', get_value(lods, section, 'FILE').replace(old_name, new_name))
        idx += 1
    lods.write_to_file(path)


def clone_existing_car(existing_car_path: Path, new_car_path: Path,
                       sfx_guids_path: Optional[Path] = None,
                       unpack_data_dir: bool = True) -> None:
    """
    Copy a car folder and make the copy stand on its own.

    The source's ``data.acd`` is decoded with the source folder name; the
    clone then either keeps a plain ``data/`` dir (``data.acd`` is deleted
    so it can't shadow edits) or is repacked under its own name. A failed
    clone removes the half-made folder.
    """
    existing_car_path = Path(existing_car_path)
    new_car_path = Path(new_car_path)
    existing_car_name = existing_car_path.name
    if not existing_car_name:
        raise ArgumentError(f"Can't get last part from provided path ({existing_car_path})")
    if existing_car_path.resolve() == new_car_path.resolve():
        raise CarAlreadyExists(f"Cannot clone car to its existing location. ({existing_car_path})")
    if new_car_path.exists():
        raise CarAlreadyExists(f"Car {new_car_path} directory already exists")
    if sfx_guids_path is None:
        sfx_guids_path = config.ac_sfx_guids_path()

    try:
        shutil.copytree(existing_car_path, new_car_path)
        data_path = new_car_path / 'data'
        acd_path = new_car_path / ACD_FILENAME
        if not data_path.is_dir():
            if not acd_path.is_file():
                raise InvalidCar(f"{existing_car_path} doesn't contain a data dir or {ACD_FILENAME} file")
            logger.info("No data dir present in %s. Data will be extracted from %s", new_car_path, ACD_FILENAME)
            AcdArchive.load_with_key(acd_path, existing_car_name).unpack()
        fix_car_specific_filenames(new_car_path, existing_car_name)
        update_car_sfx(new_car_path, existing_car_name, sfx_guids_path)
        if unpack_data_dir:
            logger.info("Deleting %s as data will be invalid after clone completion", acd_path)
            delete_data_acd_file(new_car_path)
        else:
            logger.info("Packing %s into an .acd file", data_path)
            AcdArchive.create_from_data_dir(data_path).write()
            shutil.rmtree(data_path)
    except (AcdError, CarError, OSError) as exc:
        logger.error("Clone of %s failed. %s", existing_car_path, exc)
        shutil.rmtree(new_car_path, ignore_errors=True)
        raise


def new_spec_folder_name(existing_car_name: str, spec_name: str) -> str:
    return f"{existing_car_name}_{'_'.join(spec_name.lower().split())}"


def create_new_car_spec(cars_dir: Path, existing_car_name: str, spec_name: str,
                        sfx_guids_path: Optional[Path] = None,
                        unpack_data: bool = True) -> Path:
    """Clone ``existing_car_name`` to ``<existing>_<spec>`` and label the clone's UI data."""
    cars_dir = Path(cars_dir)
    existing_car_path = cars_dir / existing_car_name
    if not existing_car_path.exists():
        raise NoSuchCar(existing_car_name)
    new_car_name = new_spec_folder_name(existing_car_name, spec_name)
    new_car_path = cars_dir / new_car_name
    if new_car_path.exists():
        raise CarAlreadyExists(new_car_name)
    logger.info("Cloning %s to %s", existing_car_path, new_car_path)
    clone_existing_car(existing_car_path, new_car_path, sfx_guids_path, unpack_data)
    update_car_ui_data(new_car_path, spec_name, existing_car_name)
    return new_car_path


def update_car_ui_data(car_path: Path, new_suffix: str, parent_car_folder_name: str) -> None:
    car = Car.load_from_path(car_path)
    car_ini = CarIniData.from_data_interface(car.data_interface)
    existing_name = car_ini.screen_name() or car.folder_name
    new_name = f"{existing_name} {new_suffix}"
    logger.info("Updating screen name and ui data from %s to %s", existing_name, new_name)
    car_ini.set_screen_name(new_name)
    car_ini.write()

    ui_info = UiInfo.load_from_car(car.root_path)
    ui_info.set_name(new_name)
    existing_parent = ui_info.parent()
    if existing_parent:
        logger.info("Parent name already set to %s", existing_parent)
    else:
        logger.info("Updating parent name")
        ui_info.set_parent(parent_car_folder_name)
    if ui_info.add_tag_if_unique(ENGINE_CRANE_CAR_TAG):
        logger.info("Added %s tag", ENGINE_CRANE_CAR_TAG)
    else:
        logger.info("%s already present in tags", ENGINE_CRANE_CAR_TAG)
    ui_info.write()
