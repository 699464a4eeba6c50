#!/usr/bin/env python3
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

from engine_crane import config
from engine_crane.acd import AcdArchive, generate_acd_key
from engine_crane.beamng import list_mods
from engine_crane.car import create_new_car_spec, list_installed_cars
from engine_crane.crate_engine.container import CrateEngine, CrateEngineFilter, load_crate_engines
from engine_crane.crate_engine.metadata import BEAM_NG_MOD_SOURCE_ID, DIRECT_EXPORT_SOURCE_ID
from engine_crane.editor.fuel import FuelEfficiencyConfig, FuelFlowConfig
from engine_crane.editor.gears import GearConfigType, convert_gear_configuration, gear_configuration_builder
from engine_crane.errors import (AcdError, CarError, CodecError, CrateEngineError, FabricationError, SandboxError,
                                 ValidationError)
from engine_crane.fabricator import (AdditionalAcCarData, AssettoCorsaCarSettings, AssettoCorsaPhysicsLevel,
                                     swap_beamng_mod_into_ac_car, swap_crate_engine_into_ac_car)

SOURCE_CHOICES = {'beamng': BEAM_NG_MOD_SOURCE_ID, 'direct': DIRECT_EXPORT_SOURCE_ID}
GEAR_CONFIG_CHOICES = {
    'fixed': GearConfigType.FIXED,
    'sets': GearConfigType.GEAR_SETS,
    'per-gear': GearConfigType.PER_GEAR,
}


def _optional_path(value):
    return Path(value) if value else None


def _parse_rpm_values(pairs: List[str]) -> Dict[int, float]:
    values = {}
    for pair in pairs:
        rpm, _, value = pair.partition('=')
        try:
            values[int(rpm)] = float(value)
        except ValueError:
            raise SystemExit(f"Expected RPM=VALUE, got '{pair}'")
    return values


def cmd_list_cars(args: argparse.Namespace) -> None:
    cars_dir = _optional_path(args.cars_dir) or config.ac_cars_path()
    cars = list_installed_cars(cars_dir)
    print(f"{len(cars)} cars in {cars_dir}")
    for car in cars:
        print(f" - {car.name}")


def cmd_list_mods(args: argparse.Namespace) -> None:
    mods_dir = _optional_path(args.mods_dir) or config.beamng_mods_path()
    mods = list_mods(mods_dir)
    print(f"{len(mods)} mods in {mods_dir}")
    for mod in mods:
        print(f" - {mod.name}")


def cmd_create_crate_engine(args: argparse.Namespace) -> None:
    mod_path = Path(args.mod)
    print(f"Creating crate engine from {mod_path} ...")
    engine = CrateEngine.from_beamng_mod_zip(mod_path, xref_mod_with_sandbox=not args.no_xref,
                                             db_path=_optional_path(args.db))
    out = engine.write_to_dir(_optional_path(args.out_dir))
    print(f"Wrote {engine.name} to {out}")


def cmd_list_crate_engines(args: argparse.Namespace) -> None:
    engine_filter = CrateEngineFilter(source_id=SOURCE_CHOICES.get(args.source) if args.source else None)
    engines = load_crate_engines(_optional_path(args.dir), engine_filter)
    for path, metadata in engines.items():
        peaks = metadata.peaks
        print(f"{metadata.name} [{metadata.get_source().source_name()}] {metadata.block_description()} "
              f"{peaks.capacity}cc {peaks.peak_power}kW@{peaks.peak_power_rpm} "
              f"{peaks.peak_torque}Nm@{peaks.peak_torque_rpm} ({path.name})")
    if not engines:
        print("No crate engines found")


def cmd_new_spec(args: argparse.Namespace) -> None:
    cars_dir = _optional_path(args.cars_dir) or config.ac_cars_path()
    print(f"Creating {args.spec_name} spec of {args.car} ...")
    new_car = create_new_car_spec(cars_dir, args.car, args.spec_name, _optional_path(args.sfx_guids),
                                  unpack_data=not args.pack_acd)
    print(f"Created {new_car}")


def cmd_swap(args: argparse.Namespace) -> None:
    car_path = Path(args.car)
    settings = AssettoCorsaCarSettings(
        minimum_physics_level=(AssettoCorsaPhysicsLevel.CSP_EXTENDED_PHYSICS if args.csp
                               else AssettoCorsaPhysicsLevel.BASE_GAME),
        auto_adjust_clutch=not args.no_clutch_adjust,
        add_upgrade_icon=not args.no_upgrade_icon,
    )
    additional = AdditionalAcCarData(engine_weight=args.engine_weight)
    if args.crate_engine:
        print(f"Swapping crate engine {args.crate_engine} into {car_path} ({settings.minimum_physics_level})")
        swap_crate_engine_into_ac_car(Path(args.crate_engine), car_path, settings, additional)
    else:
        print(f"Swapping engine from {args.mod} into {car_path} ({settings.minimum_physics_level})")
        swap_beamng_mod_into_ac_car(Path(args.mod), car_path, settings, additional, _optional_path(args.db))
    print("Swap complete")


def cmd_acd_unpack(args: argparse.Namespace) -> None:
    acd_path = Path(args.acd)
    if args.key_seed:
        archive = AcdArchive.load_with_key(acd_path, args.key_seed)
    else:
        archive = AcdArchive.load_from_acd_file(acd_path)
    if args.out:
        archive.unpack_to(Path(args.out))
        out = Path(args.out)
    else:
        out = archive.unpack()
    pack = archive.dlc_pack
    if pack is not None:
        print(f"Archive belongs to {pack.name}")
    print(f"Unpacked {len(archive.files)} files to {out}")


def cmd_acd_pack(args: argparse.Namespace) -> None:
    archive = AcdArchive.create_from_data_dir(Path(args.data_dir))
    out = _optional_path(args.out) or archive.acd_path
    archive.write_to(out)
    print(f"Packed {len(archive.files)} files into {out}")


def cmd_acd_key(args: argparse.Namespace) -> None:
    print(generate_acd_key(args.folder_name))


def cmd_gears(args: argparse.Namespace) -> None:
    car_path = Path(args.car)
    gears = gear_configuration_builder(car_path)
    print(f"{car_path.name}: {gears.get_config_type()}")
    for gear_idx, ratio in enumerate(gears.drivetrain_ratios(), start=1):
        print(f" Gear {gear_idx}: {ratio:.3f}")
    print(f" Final: {gears.final_drive.selected_ratio():.3f} "
          f"({len(gears.final_drive.ratio_set)} choices)")
    if args.convert:
        converted = convert_gear_configuration(gears, GEAR_CONFIG_CHOICES[args.convert], args.allow_lossy)
        converted.apply_to_car(car_path)
        print(f"Converted to {converted.get_config_type()}")


def cmd_fuel(args: argparse.Namespace) -> None:
    car_path = Path(args.car)
    if args.flow:
        table = FuelFlowConfig.from_car(car_path)
        setter = table.set_flow
        values = _parse_rpm_values(args.flow)
    else:
        table = FuelEfficiencyConfig.from_car(car_path)
        setter = table.set_efficiency
        values = _parse_rpm_values(args.efficiency)
    if not values:
        print("Sample rpms: " + ", ".join(str(rpm) for rpm in table.rpms()))
        return
    for rpm, value in values.items():
        table.add_sample(rpm)
        setter(rpm, value)
    table.update_car(car_path)
    print(f"Updated fuel consumption of {car_path.name}")


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Put Automation engines into Assetto Corsa cars")
    parser.add_argument('-v', '--verbose', action='count', default=0, help='More logging (-vv for debug)')
    sub = parser.add_subparsers(dest='cmd', required=True)

    p_cars = sub.add_parser('list-cars', help='List installed Assetto Corsa cars')
    p_cars.add_argument('--cars-dir', default=None, help='AC content/cars folder (defaults to AC_INSTALL_PATH)')
    p_cars.set_defaults(func=cmd_list_cars)

    p_mods = sub.add_parser('list-mods', help='List BeamNG mod zips')
    p_mods.add_argument('--mods-dir', default=None, help='BeamNG mods folder (defaults to BEAMNG_MODS_PATH)')
    p_mods.set_defaults(func=cmd_list_mods)

    p_ce = sub.add_parser('create-crate-engine', help='Package an Automation engine exported as a BeamNG mod')
    p_ce.add_argument('mod', help='Path to the BeamNG mod zip')
    p_ce.add_argument('--db', default=None, help='Automation sandbox database (detected from the engine version by default)')
    p_ce.add_argument('--no-xref', action='store_true', help="Don't cross-check the mod against the sandbox")
    p_ce.add_argument('--out-dir', default=None, help='Where to write the .eng file (defaults to ENGINE_CRANE_DATA_DIR)')
    p_ce.set_defaults(func=cmd_create_crate_engine)

    p_lce = sub.add_parser('list-crate-engines', help='List crate engines')
    p_lce.add_argument('--dir', default=None, help='Crate engine folder (defaults to ENGINE_CRANE_DATA_DIR)')
    p_lce.add_argument('--source', choices=sorted(SOURCE_CHOICES), default=None, help='Only list engines from this source')
    p_lce.set_defaults(func=cmd_list_crate_engines)

    p_spec = sub.add_parser('new-spec', help='Clone a car into a new spec ready for an engine swap')
    p_spec.add_argument('car', help='Folder name of the existing car')
    p_spec.add_argument('spec_name', help='Name of the new spec, appended to the car name')
    p_spec.add_argument('--cars-dir', default=None, help='AC content/cars folder')
    p_spec.add_argument('--sfx-guids', default=None, help='Master sfx/GUIDs.txt of the installation')
    p_spec.add_argument('--pack-acd', action='store_true', help='Repack the clone into data.acd instead of leaving a data folder')
    p_spec.set_defaults(func=cmd_new_spec)

    p_swap = sub.add_parser('swap', help='Swap an engine into a car')
    p_swap.add_argument('car', help='Path to the car folder to modify')
    source = p_swap.add_mutually_exclusive_group(required=True)
    source.add_argument('--crate-engine', default=None, help='Path to a .eng crate engine')
    source.add_argument('--mod', default=None, help='Path to a BeamNG mod zip')
    p_swap.add_argument('--db', default=None, help='Automation sandbox database, for --mod')
    p_swap.add_argument('--csp', action='store_true', help='Use CSP extended physics (fuel flow model)')
    p_swap.add_argument('--no-clutch-adjust', action='store_true', help="Don't raise the clutch torque limit")
    p_swap.add_argument('--no-upgrade-icon', action='store_true', help="Don't add ui/upgrade.png")
    p_swap.add_argument('--engine-weight', type=int, default=None, help='Weight in kg of the engine being replaced')
    p_swap.set_defaults(func=cmd_swap)

    p_unpack = sub.add_parser('acd-unpack', help='Extract a data.acd archive')
    p_unpack.add_argument('acd', help='Path to data.acd')
    p_unpack.add_argument('--key-seed', default=None, help='Folder name to derive the key from (defaults to the parent folder)')
    p_unpack.add_argument('--out', default=None, help='Output folder (defaults to data/ beside the archive)')
    p_unpack.set_defaults(func=cmd_acd_unpack)

    p_pack = sub.add_parser('acd-pack', help='Pack a data folder into data.acd')
    p_pack.add_argument('data_dir', help='Path to the car data folder')
    p_pack.add_argument('--out', default=None, help='Output archive (defaults to data.acd beside the folder)')
    p_pack.set_defaults(func=cmd_acd_pack)

    p_key = sub.add_parser('acd-key', help='Print the data.acd key for a car folder name')
    p_key.add_argument('folder_name', help='Car folder name')
    p_key.set_defaults(func=cmd_acd_key)

    p_gears = sub.add_parser('gears', help="Show a car's gearing, optionally converting it")
    p_gears.add_argument('car', help='Path to the car folder')
    p_gears.add_argument('--convert', choices=sorted(GEAR_CONFIG_CHOICES), default=None, help='Convert to this gearing type')
    p_gears.add_argument('--allow-lossy', action='store_true', help='Keep only the selected ratios when converting would drop some')
    p_gears.set_defaults(func=cmd_gears)

    p_fuel = sub.add_parser('fuel', help='Set CSP fuel consumption by rpm')
    p_fuel.add_argument('car', help='Path to the car folder')
    values = p_fuel.add_mutually_exclusive_group()
    values.add_argument('--efficiency', nargs='*', default=[], metavar='RPM=PERCENT', help='Thermal efficiency samples')
    values.add_argument('--flow', nargs='*', default=[], metavar='RPM=G_PER_MIN', help='Fuel flow samples')
    p_fuel.set_defaults(func=cmd_fuel)

    args = parser.parse_args(argv)
    level = logging.WARNING if args.verbose == 0 else logging.INFO if args.verbose == 1 else logging.DEBUG
    logging.basicConfig(level=level, format='%(levelname)s %(name)s: %(message)s')
    try:
        args.func(args)
    except (AcdError, CarError, CodecError, CrateEngineError, FabricationError, SandboxError,
            ValidationError) as exc:
        print(f"Error: {exc}")
        sys.exit(1)


if __name__ == '__main__':
    main()
