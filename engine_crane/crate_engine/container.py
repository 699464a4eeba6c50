"""
The ``.eng`` crate engine file: a metadata header followed by the payload
the header's source id selects.

Only the header needs to be read to list engines, so a directory of crate
engines can be scanned without decoding every payload.
"""

from __future__ import annotations

import io
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Dict, Optional, Union

from .. import config
from ..automation.types import AspirationType, BlockConfig, HeadConfig, Valves
from ..beamng import get_name_from_jbeam_data
from ..errors import CrateEngineError, DecodeError, EncodeError
from .binary import BincodeReader, BincodeWriter
from .metadata import (BEAM_NG_MOD_SOURCE_ID, DIRECT_EXPORT_SOURCE_ID, CrateEngineMetadata, DataSource,
                       EngineFigures, MetadataV3, read_metadata, serialize_metadata)
from .payload import BeamNGModDataV1, CrateEngineData, DirectExportDataV1

logger = logging.getLogger(__name__)

CRATE_ENGINE_FILE_SUFFIX = 'eng'

_BAD_FILENAME_CHARS = '<>:"/\\|?*'


def sanitize(name: str) -> str:
    """Drop characters that aren't allowed in filenames on any platform we run on."""
    cleaned = ''.join(c for c in name if c not in _BAD_FILENAME_CHARS and ord(c) >= 32)
    cleaned = re.sub(r'\s+', ' ', cleaned).strip().rstrip('.')
    return cleaned or 'engine'


def crate_engine_filename(name: str, target_dir: Path) -> Path:
    """``<sanitized_name>.eng`` in ``target_dir``, suffixed ``_1``, ``_2``... on collision."""
    stem = sanitize(name).replace(' ', '_')
    candidate = Path(target_dir) / f"{stem}.{CRATE_ENGINE_FILE_SUFFIX}"
    idx = 1
    while candidate.exists():
        candidate = Path(target_dir) / f"{stem}_{idx}.{CRATE_ENGINE_FILE_SUFFIX}"
        idx += 1
    return candidate


def _read_payload(metadata: CrateEngineMetadata, stream: BinaryIO, path: Optional[str]) -> CrateEngineData:
    source = metadata.get_source()
    reader = BincodeReader(stream, path)
    try:
        if source.source_id == BEAM_NG_MOD_SOURCE_ID:
            if metadata.data_version != BeamNGModDataV1.VERSION:
                raise CrateEngineError(f"Unsupported BeamNG mod data version {metadata.data_version}")
            return BeamNGModDataV1.read(reader)
        if source.source_id == DIRECT_EXPORT_SOURCE_ID:
            return DirectExportDataV1.read(reader)
    except DecodeError as exc:
        raise CrateEngineError(f"Failed to deserialise {source.source_name()} crate engine. {exc}") from exc
    raise CrateEngineError(f"Unknown data source with id {source.source_id}")


@dataclass
class CrateEngine:
    metadata: CrateEngineMetadata
    data: CrateEngineData

    @classmethod
    def from_beamng_mod_zip(cls, mod_path: Path, xref_mod_with_sandbox: bool = True,
                            db_path: Optional[Path] = None) -> 'CrateEngine':
        mod_path = Path(mod_path)
        data = BeamNGModDataV1.from_beamng_mod_zip(mod_path, xref_mod_with_sandbox, db_path)
        engine_data = data.main_engine_jbeam_data()
        name = get_name_from_jbeam_data(engine_data) if engine_data is not None else None
        if name is None:
            name = mod_path.stem
        jbeam_hash = data.jbeam_data_hash()
        if jbeam_hash is None:
            logger.warning("Failed to calculate engine jbeam data hash")
        automation = data.automation_data()
        metadata = MetadataV3(
            source=DataSource.from_beam_ng_mod([jbeam_hash, data.automation_data_hash()]),
            data_version=data.version(),
            automation_version=automation.variant_version,
            name=name,
            build_year=automation.get_variant_build_year(),
            block_type=automation.get_block_type(),
            head_config=automation.get_head_config(),
            cylinders=automation.get_cylinders(),
            valves=automation.get_valve_type(),
            peaks=EngineFigures(
                capacity=automation.get_capacity_cc(),
                aspiration=automation.get_aspiration(),
                fuel=automation.fuel_type or 'Unknown',
                peak_power=round(automation.peak_power),
                peak_power_rpm=round(automation.peak_power_rpm),
                peak_torque=round(automation.peak_torque),
                peak_torque_rpm=round(automation.peak_torque_rpm),
                max_rpm=round(automation.max_rpm),
            ),
        )
        return cls(metadata, data)

    @classmethod
    def from_exporter_data(cls, data: DirectExportDataV1) -> 'CrateEngine':
        """Wrap data sent by the in-game exporter, deriving the header from its groups."""
        def opt_string(group: str, key: str, default: str) -> str:
            return data.string_data.get(group, {}).get(key, default)

        def opt_float(group: str, key: str) -> float:
            return data.float_data.get(group, {}).get(key, 0.0)

        block_config = BlockConfig.from_game_name(opt_string('Parts', 'BlockConfig', ''))
        cylinders = int(opt_float('Parts', 'Cylinders')) or block_config.cylinders()
        metadata = MetadataV3(
            source=DataSource.from_direct_export(),
            data_version=data.version(),
            automation_version=int(opt_float('Info', 'GameVersion')),
            name=data.deduce_engine_name(),
            build_year=int(opt_float('Info', 'VariantYear')),
            block_type=block_config.block_type(),
            head_config=HeadConfig.from_game_name(opt_string('Parts', 'HeadConfig', '')),
            cylinders=cylinders,
            valves=Valves.from_game_name(opt_string('Parts', 'ValveType', '')),
            peaks=EngineFigures(
                capacity=round(opt_float('Tune', 'Displacement') * 1000),
                aspiration=AspirationType.from_game_name(opt_string('Parts', 'Aspiration', '')),
                fuel=opt_string('Parts', 'FuelType', 'Unknown'),
                peak_power=round(opt_float('Results', 'PeakPower')),
                peak_power_rpm=round(opt_float('Results', 'PeakPowerRPM')),
                peak_torque=round(opt_float('Results', 'PeakTorque')),
                peak_torque_rpm=round(opt_float('Results', 'PeakTorqueRPM')),
                max_rpm=round(opt_float('Results', 'MaxRPM')),
            ),
        )
        return cls(metadata, data)

    @classmethod
    def deserialize(cls, source: Union[bytes, BinaryIO], path: Optional[str] = None) -> 'CrateEngine':
        stream = io.BytesIO(source) if isinstance(source, (bytes, bytearray)) else source
        metadata = read_metadata(stream, path)
        return cls(metadata, _read_payload(metadata, stream, path))

    @classmethod
    def load(cls, path: Path) -> 'CrateEngine':
        path = Path(path)
        try:
            with path.open('rb') as f:
                return cls.deserialize(f, str(path))
        except OSError as exc:
            raise CrateEngineError(f"Couldn't open {path}. {exc}") from exc

    def serialize(self) -> bytes:
        writer = BincodeWriter()
        try:
            self.data.write(writer)
            return serialize_metadata(self.metadata) + writer.getvalue()
        except EncodeError as exc:
            raise CrateEngineError(f"Failed to serialise {self.name}. {exc}") from exc

    def serialize_to(self, stream: BinaryIO) -> None:
        stream.write(self.serialize())

    def write_to_dir(self, target_dir: Optional[Path] = None) -> Path:
        target_dir = Path(target_dir) if target_dir is not None else config.crate_engine_data_dir()
        target_dir.mkdir(parents=True, exist_ok=True)
        path = crate_engine_filename(self.name, target_dir)
        logger.info("Writing crate engine %s to %s", self.name, path)
        path.write_bytes(self.serialize())
        return path

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def version(self) -> int:
        return self.metadata.data_version

    def source(self) -> DataSource:
        return self.metadata.get_source()


@dataclass
class CrateEngineFilter:
    source_id: Optional[int] = None
    min_data_version: Optional[int] = None

    def matches(self, metadata: CrateEngineMetadata) -> bool:
        if self.source_id is not None and metadata.get_source().source_id != self.source_id:
            return False
        if self.min_data_version is not None and metadata.data_version < self.min_data_version:
            return False
        return True


def load_crate_engines(directory: Optional[Path] = None,
                       engine_filter: Optional[CrateEngineFilter] = None) -> Dict[Path, CrateEngineMetadata]:
    """Metadata of every ``.eng`` file in ``directory``; unreadable files are logged and skipped."""
    directory = Path(directory) if directory is not None else config.crate_engine_data_dir()
    found: Dict[Path, CrateEngineMetadata] = {}
    if not directory.is_dir():
        logger.warning("Crate engine directory %s doesn't exist", directory)
        return found
    for path in sorted(directory.glob(f"*.{CRATE_ENGINE_FILE_SUFFIX}")):
        try:
            with path.open('rb') as f:
                metadata = read_metadata(f, str(path))
        except OSError as exc:
            logger.warning("Couldn't open %s. %s", path, exc)
            continue
        except CrateEngineError as exc:
            logger.warning("Error occurred for %s. %s", path, exc)
            continue
        if engine_filter is not None and not engine_filter.matches(metadata):
            continue
        found[path] = metadata
    return found
