"""
Crate engine payloads.

Which payload follows the metadata is decided by the metadata's source
id; both current payloads are version 1 and use the legacy framing.
"""

from __future__ import annotations

import dataclasses
import hashlib
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple, Union

from ..automation.car_file import CarFile, get_variant_section
from ..automation.sandbox import EngineV1, SandboxVersion, load_engine_by_uuid
from ..automation.validation import AutomationSandboxCrossChecker
from ..beamng import ModData, find_main_engine_jbeam_filename, loads_jbeam
from ..errors import (BeamNGModError, CarFileAccessError, CarFileDecodeError, CrateEngineError,
                      SandboxError, ValidationError)
from .binary import BincodeReader, BincodeWriter

logger = logging.getLogger(__name__)

_U64_FIELDS = {'family_version', 'variant_version'}


def _engine_field_codec(name: str, annotation: str) -> Tuple[Callable[[BincodeReader], Any],
                                                          Callable[[BincodeWriter, Any], None]]:
    if annotation == 'str':
        return (lambda r: r.string()), (lambda w, v: w.string(v))
    if annotation == 'float':
        return (lambda r: r.f64()), (lambda w, v: w.f64(float(v)))
    if annotation == 'int':
        if name in _U64_FIELDS:
            return (lambda r: r.u64()), (lambda w, v: w.u64(v))
        return (lambda r: r.i32()), (lambda w, v: w.i32(v))
    if annotation == 'Optional[str]':
        return (lambda r: r.option(r.string)), (lambda w, v: w.option(v, w.string))
    if annotation == 'Optional[float]':
        return (lambda r: r.option(r.f64)), (lambda w, v: w.option(None if v is None else float(v), w.f64))
    if annotation == 'Optional[int]':
        return (lambda r: r.option(r.i32)), (lambda w, v: w.option(v, w.i32))
    if annotation == 'List[float]':
        return (lambda r: r.seq(r.f64)), (lambda w, v: w.seq([float(x) for x in v], w.f64))
    raise TypeError(f"No wire format for EngineV1.{name}: {annotation}")


# field order is the wire order
ENGINE_V1_CODEC = [(f.name, *_engine_field_codec(f.name, str(f.type))) for f in dataclasses.fields(EngineV1)]


def read_engine_v1(reader: BincodeReader) -> EngineV1:
    return EngineV1(**{name: read(reader) for name, read, _ in ENGINE_V1_CODEC})


def write_engine_v1(writer: BincodeWriter, engine: EngineV1) -> None:
    for name, _, write in ENGINE_V1_CODEC:
        write(writer, getattr(engine, name))


def automation_data_hash(engine: EngineV1) -> bytes:
    hasher = hashlib.sha256()
    hasher.update(engine.family_data_checksum_data())
    hasher.update(engine.variant_data_checksum_data())
    hasher.update(engine.result_data_checksum_data())
    return hasher.digest()


def _car_file_uid_and_version(car_file: CarFile) -> Tuple[str, int]:
    try:
        variant = get_variant_section(car_file)
    except CarFileAccessError as exc:
        raise CrateEngineError(str(exc)) from exc
    uid_attr = variant.get_attribute('UID')
    if uid_attr is None:
        raise CrateEngineError("Missing UID attribute from Variant info")
    version_attr = variant.get_attribute('GameVersion')
    if version_attr is None:
        raise CrateEngineError("Missing GameVersion attribute from Variant info")
    try:
        return uid_attr.value.as_str(), int(version_attr.value.as_num())
    except CarFileAccessError as exc:
        raise CrateEngineError(f"Invalid Variant info. {exc}") from exc


@dataclass
class BeamNGModDataV1:
    """A BeamNG mod's engine files together with the sandbox record they were exported from."""

    VERSION = 1

    mod_info_json_data: Optional[bytes]
    main_engine_jbeam_filename: str
    jbeam_file_data: Dict[str, bytes]
    car_file_data: bytes
    automation_variant_data: EngineV1
    license_data: Optional[bytes] = None

    def version(self) -> int:
        return self.VERSION

    @classmethod
    def from_beamng_mod_zip(cls, mod_path: Path, xref_mod_with_sandbox: bool = True,
                            db_path: Optional[Path] = None) -> 'BeamNGModDataV1':
        mod_path = Path(mod_path)
        try:
            mod_data = ModData.from_path(mod_path)
        except BeamNGModError as exc:
            raise CrateEngineError(str(exc)) from exc
        car_file_data = mod_data.get_automation_car_file_data()
        if car_file_data is None:
            raise CrateEngineError("Failed to load .car file from mod. File is missing")
        try:
            car_file = CarFile.from_bytes(car_file_data)
        except CarFileDecodeError as exc:
            raise CrateEngineError(f"Failed to load .car file from mod. {exc}") from exc

        uid, version = _car_file_uid_and_version(car_file)
        if len(uid) < 5:
            raise CrateEngineError(f"Invalid engine uuid found {uid}")
        logger.info("Engine uuid: %s", uid)
        main_engine_jbeam_filename = find_main_engine_jbeam_filename(uid, mod_data.jbeam_filenames())
        if main_engine_jbeam_filename is None:
            raise CrateEngineError("Failed to find the main engine data")
        logger.info("Found main engine data file: %s", main_engine_jbeam_filename)

        logger.info("Engine version number: %s", version)
        sandbox_version = SandboxVersion.from_version_number(version)
        logger.info("Deduced as %s", sandbox_version)
        try:
            automation_variant_data = load_engine_by_uuid(uid, sandbox_version, db_path)
        except SandboxError as exc:
            raise CrateEngineError(str(exc)) from exc
        if automation_variant_data is None:
            raise CrateEngineError(f"No engine found with uuid {uid}")

        if xref_mod_with_sandbox:
            try:
                AutomationSandboxCrossChecker(car_file, automation_variant_data).validate_or_raise()
            except ValidationError as exc:
                raise CrateEngineError(str(exc)) from exc

        try:
            mod_info_json_data: Optional[bytes] = mod_data.get_info_json().encode('utf-8')
        except BeamNGModError as exc:
            logger.warning("Couldn't read info.json from %s. %s", mod_path, exc)
            mod_info_json_data = None

        return cls(
            mod_info_json_data=mod_info_json_data,
            main_engine_jbeam_filename=main_engine_jbeam_filename,
            jbeam_file_data=mod_data.take_jbeam_file_data(),
            car_file_data=car_file_data,
            automation_variant_data=automation_variant_data,
            license_data=mod_data.take_license_data(),
        )

    def main_engine_jbeam_data(self) -> Optional[bytes]:
        return self.jbeam_file_data.get(self.main_engine_jbeam_filename)

    def main_engine_jbeam_map(self) -> Dict[str, Any]:
        data = self.main_engine_jbeam_data()
        if data is None:
            raise CrateEngineError(f"Main engine JBeam file {self.main_engine_jbeam_filename} missing")
        return loads_jbeam(data)

    def automation_data(self) -> EngineV1:
        return self.automation_variant_data

    def automation_data_hash(self) -> bytes:
        return automation_data_hash(self.automation_variant_data)

    def jbeam_data_hash(self) -> Optional[bytes]:
        data = self.main_engine_jbeam_data()
        return None if data is None else hashlib.sha256(data).digest()

    @classmethod
    def read(cls, reader: BincodeReader) -> 'BeamNGModDataV1':
        return cls(
            mod_info_json_data=reader.option(reader.blob),
            main_engine_jbeam_filename=reader.string(),
            jbeam_file_data=reader.map(reader.string, reader.blob),
            car_file_data=reader.blob(),
            automation_variant_data=read_engine_v1(reader),
            license_data=reader.option(reader.blob),
        )

    def write(self, writer: BincodeWriter) -> None:
        writer.option(self.mod_info_json_data, writer.blob)
        writer.string(self.main_engine_jbeam_filename)
        writer.map(dict(sorted(self.jbeam_file_data.items())), writer.string, writer.blob)
        writer.blob(self.car_file_data)
        write_engine_v1(writer, self.automation_variant_data)
        writer.option(self.license_data, writer.blob)


@dataclass
class DirectExportDataV1:
    """
    Engine data pushed straight out of Automation by the exporter script.

    Strings and floats are grouped (``Results``, ``Parts``, ``Tune``,
    ``Info``...) and curves are sparse samples keyed by a 1-based index.
    """

    VERSION = 1

    exporter_script_version: int = 0
    string_data: Dict[str, Dict[str, str]] = field(default_factory=dict)
    float_data: Dict[str, Dict[str, float]] = field(default_factory=dict)
    curve_data: Dict[str, Dict[int, float]] = field(default_factory=dict)
    car_file_data: Optional[bytes] = None

    def version(self) -> int:
        return self.VERSION

    def add_string(self, group: str, key: str, value: str) -> None:
        self.string_data.setdefault(group, {})[key] = value

    def add_float(self, group: str, key: str, value: float) -> None:
        self.float_data.setdefault(group, {})[key] = float(value)

    def add_curve_data(self, curve_name: str, index: int, value: float) -> None:
        self.curve_data.setdefault(curve_name, {})[index] = float(value)

    def lookup_string(self, group: str, key: str) -> str:
        try:
            return self.string_data[group][key]
        except KeyError:
            raise CrateEngineError(f"Missing {group}.{key} in string_data") from None

    def lookup_float(self, group: str, key: str) -> float:
        try:
            return self.float_data[group][key]
        except KeyError:
            raise CrateEngineError(f"Missing {group}.{key} in float_data") from None

    def lookup_curve(self, curve_name: str) -> Dict[int, float]:
        try:
            curve = self.curve_data[curve_name]
        except KeyError:
            raise CrateEngineError(f"Missing {curve_name} in curve_data") from None
        return dict(sorted(curve.items()))

    def deduce_engine_name(self) -> str:
        family = self.string_data.get('Info', {}).get('FamilyName', '')
        variant = self.string_data.get('Info', {}).get('VariantName', '')
        if family and variant:
            return f"{family} - {variant}"
        return family or variant or 'Unknown Engine'

    def to_json_dict(self) -> Dict[str, Any]:
        return {
            'exporter_script_version': self.exporter_script_version,
            'string_data': self.string_data,
            'float_data': self.float_data,
            'curve_data': {name: {str(k): v for k, v in sorted(curve.items())}
                           for name, curve in self.curve_data.items()},
        }

    @classmethod
    def read(cls, reader: BincodeReader) -> 'DirectExportDataV1':
        return cls(
            exporter_script_version=reader.u32(),
            string_data=reader.map(reader.string, lambda: reader.map(reader.string, reader.string)),
            float_data=reader.map(reader.string, lambda: reader.map(reader.string, reader.f64)),
            curve_data=reader.map(reader.string, lambda: reader.map(reader.u64, reader.f64)),
            car_file_data=reader.option(reader.blob),
        )

    def write(self, writer: BincodeWriter) -> None:
        def sorted_map(values: Dict[Any, Any]) -> Dict[Any, Any]:
            return dict(sorted(values.items()))

        writer.u32(self.exporter_script_version)
        writer.map(sorted_map(self.string_data), writer.string,
                   lambda group: writer.map(sorted_map(group), writer.string, writer.string))
        writer.map(sorted_map(self.float_data), writer.string,
                   lambda group: writer.map(sorted_map(group), writer.string, writer.f64))
        writer.map(sorted_map(self.curve_data), writer.string,
                   lambda curve: writer.map(sorted_map(curve), writer.u64, writer.f64))
        writer.option(self.car_file_data, writer.blob)


CrateEngineData = Union[BeamNGModDataV1, DirectExportDataV1]
