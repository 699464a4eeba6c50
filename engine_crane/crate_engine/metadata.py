"""
Crate engine metadata headers.

Every ``.eng`` file starts with a u16 LE metadata version then the
metadata body. Versions 1 and 2 use the legacy framing, version 3 the
varint one. New files are always written as version 3.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import BinaryIO, ClassVar, List, Optional, Type, Union

from ..automation.types import AspirationType, BlockConfig, BlockType, GameNamedVariant, HeadConfig, Valves
from ..errors import CrateEngineError, DecodeError
from .binary import BincodeReader, BincodeWriter, StandardBincodeReader, StandardBincodeWriter

BEAM_NG_MOD_SOURCE_ID = 1
DIRECT_EXPORT_SOURCE_ID = 2

_SOURCE_NAMES = {
    BEAM_NG_MOD_SOURCE_ID: 'BeamNG Mod',
    DIRECT_EXPORT_SOURCE_ID: 'Direct Automation Export',
}


@dataclass
class DataSource:
    source_id: int
    hashes: List[Optional[bytes]] = field(default_factory=list)

    @classmethod
    def from_beam_ng_mod(cls, hashes: List[Optional[bytes]]) -> 'DataSource':
        return cls(BEAM_NG_MOD_SOURCE_ID, list(hashes))

    @classmethod
    def from_direct_export(cls) -> 'DataSource':
        return cls(DIRECT_EXPORT_SOURCE_ID, [])

    def source_name(self) -> str:
        return _SOURCE_NAMES.get(self.source_id, 'Unknown')

    @classmethod
    def read(cls, reader: BincodeReader) -> 'DataSource':
        source_id = reader.u16()
        return cls(source_id, reader.seq(lambda: reader.option(reader.hash)))

    def write(self, writer: BincodeWriter) -> None:
        writer.u16(self.source_id)
        writer.seq(self.hashes, lambda h: writer.option(h, writer.hash))


def read_variant(reader: BincodeReader, kind: Type[GameNamedVariant]) -> GameNamedVariant:
    index = reader.variant()
    if index == len(kind.VARIANTS):
        return kind.from_index(index, reader.string())
    try:
        return kind.from_index(index)
    except ValueError as exc:
        raise DecodeError(reader.path, str(exc)) from exc


def write_variant(writer: BincodeWriter, value: GameNamedVariant) -> None:
    writer.variant(value.index)
    if value.is_unknown:
        writer.string(value.unknown_text)


@dataclass
class EngineFigures:
    capacity: int
    aspiration: AspirationType
    fuel: str
    peak_power: int
    peak_power_rpm: int
    peak_torque: int
    peak_torque_rpm: int
    max_rpm: int

    @classmethod
    def read(cls, reader: BincodeReader) -> 'EngineFigures':
        return cls(reader.u32(), read_variant(reader, AspirationType), reader.string(),
                   reader.u32(), reader.u32(), reader.u32(), reader.u32(), reader.u32())

    def write(self, writer: BincodeWriter) -> None:
        writer.u32(self.capacity)
        write_variant(writer, self.aspiration)
        writer.string(self.fuel)
        for value in (self.peak_power, self.peak_power_rpm, self.peak_torque, self.peak_torque_rpm, self.max_rpm):
            writer.u32(value)


class _MetadataAccessors:
    """Accessors shared by every metadata version; subclasses hold a ``peaks`` block."""

    VERSION: ClassVar[int] = 0
    peaks: EngineFigures

    def get_version_u16(self) -> int:
        return self.VERSION

    @property
    def capacity(self) -> int:
        return self.peaks.capacity

    @property
    def aspiration(self) -> AspirationType:
        return self.peaks.aspiration

    @property
    def fuel(self) -> str:
        return self.peaks.fuel

    @property
    def peak_power(self) -> int:
        return self.peaks.peak_power

    @property
    def peak_power_rpm(self) -> int:
        return self.peaks.peak_power_rpm

    @property
    def peak_torque(self) -> int:
        return self.peaks.peak_torque

    @property
    def peak_torque_rpm(self) -> int:
        return self.peaks.peak_torque_rpm

    @property
    def max_rpm(self) -> int:
        return self.peaks.max_rpm


@dataclass
class MetadataV1(_MetadataAccessors):
    VERSION: ClassVar[int] = 1

    data_version: int
    automation_version: int
    name: str
    engine_jbeam_hash: Optional[bytes]
    automation_data_hash: Optional[bytes]
    build_year: int
    block_config: BlockConfig
    head_config: HeadConfig
    valves: Valves
    peaks: EngineFigures

    def get_source(self) -> DataSource:
        return DataSource.from_beam_ng_mod([self.engine_jbeam_hash, self.automation_data_hash])

    @property
    def cylinders(self) -> int:
        return self.block_config.cylinders()

    @property
    def block_type(self) -> Optional[BlockType]:
        return None

    def block_description(self) -> str:
        return f"{self.block_config} {self.head_config} {self.valves}"

    @classmethod
    def read(cls, reader: BincodeReader) -> 'MetadataV1':
        return cls(
            data_version=reader.u16(),
            automation_version=reader.u64(),
            name=reader.string(),
            engine_jbeam_hash=reader.option(reader.hash),
            automation_data_hash=reader.option(reader.hash),
            build_year=reader.u16(),
            block_config=read_variant(reader, BlockConfig),
            head_config=read_variant(reader, HeadConfig),
            valves=read_variant(reader, Valves),
            peaks=EngineFigures.read(reader),
        )

    def write(self, writer: BincodeWriter) -> None:
        writer.u16(self.data_version)
        writer.u64(self.automation_version)
        writer.string(self.name)
        writer.option(self.engine_jbeam_hash, writer.hash)
        writer.option(self.automation_data_hash, writer.hash)
        writer.u16(self.build_year)
        write_variant(writer, self.block_config)
        write_variant(writer, self.head_config)
        write_variant(writer, self.valves)
        self.peaks.write(writer)


@dataclass
class MetadataV2(_MetadataAccessors):
    VERSION: ClassVar[int] = 2

    source: DataSource
    data_version: int
    automation_version: int
    name: str
    build_year: int
    block_config: BlockConfig
    head_config: HeadConfig
    valves: Valves
    peaks: EngineFigures

    def get_source(self) -> DataSource:
        return self.source

    @property
    def cylinders(self) -> int:
        return self.block_config.cylinders()

    @property
    def block_type(self) -> Optional[BlockType]:
        return None

    def block_description(self) -> str:
        return f"{self.block_config} {self.head_config} {self.valves}"

    @classmethod
    def read(cls, reader: BincodeReader) -> 'MetadataV2':
        return cls(
            source=DataSource.read(reader),
            data_version=reader.u16(),
            automation_version=reader.u64(),
            name=reader.string(),
            build_year=reader.u16(),
            block_config=read_variant(reader, BlockConfig),
            head_config=read_variant(reader, HeadConfig),
            valves=read_variant(reader, Valves),
            peaks=EngineFigures.read(reader),
        )

    def write(self, writer: BincodeWriter) -> None:
        self.source.write(writer)
        writer.u16(self.data_version)
        writer.u64(self.automation_version)
        writer.string(self.name)
        writer.u16(self.build_year)
        write_variant(writer, self.block_config)
        write_variant(writer, self.head_config)
        write_variant(writer, self.valves)
        self.peaks.write(writer)


@dataclass
class MetadataV3(_MetadataAccessors):
    VERSION: ClassVar[int] = 3

    source: DataSource
    data_version: int
    automation_version: int
    name: str
    build_year: int
    block_type: BlockType
    head_config: HeadConfig
    cylinders: int
    valves: Valves
    peaks: EngineFigures

    @property
    def block_config(self) -> Optional[BlockConfig]:
        return None

    def get_source(self) -> DataSource:
        return self.source

    def block_description(self) -> str:
        return f"{self.block_type}{self.cylinders} {self.head_config} {self.valves}"

    @classmethod
    def read(cls, reader: BincodeReader) -> 'MetadataV3':
        return cls(
            source=DataSource.read(reader),
            data_version=reader.u16(),
            automation_version=reader.u64(),
            name=reader.string(),
            build_year=reader.u16(),
            block_type=read_variant(reader, BlockType),
            head_config=read_variant(reader, HeadConfig),
            cylinders=reader.u16(),
            valves=read_variant(reader, Valves),
            peaks=EngineFigures.read(reader),
        )

    def write(self, writer: BincodeWriter) -> None:
        self.source.write(writer)
        writer.u16(self.data_version)
        writer.u64(self.automation_version)
        writer.string(self.name)
        writer.u16(self.build_year)
        write_variant(writer, self.block_type)
        write_variant(writer, self.head_config)
        writer.u16(self.cylinders)
        write_variant(writer, self.valves)
        self.peaks.write(writer)


CrateEngineMetadata = Union[MetadataV1, MetadataV2, MetadataV3]
CurrentMetadata = MetadataV3

_READERS = {
    MetadataV1.VERSION: (MetadataV1, BincodeReader),
    MetadataV2.VERSION: (MetadataV2, BincodeReader),
    MetadataV3.VERSION: (MetadataV3, StandardBincodeReader),
}

_WRITERS = {
    MetadataV1.VERSION: BincodeWriter,
    MetadataV2.VERSION: BincodeWriter,
    MetadataV3.VERSION: StandardBincodeWriter,
}


def read_metadata(stream: BinaryIO, path: Optional[str] = None) -> CrateEngineMetadata:
    prefix = stream.read(2)
    if len(prefix) != 2:
        raise CrateEngineError(f"Failed to read metadata from {path or 'stream'}. File too short")
    (version,) = struct.unpack('<H', prefix)
    if version not in _READERS:
        raise CrateEngineError(f"Unknown metadata version {version}")
    metadata_type, reader_type = _READERS[version]
    try:
        return metadata_type.read(reader_type(stream, path))
    except DecodeError as exc:
        raise CrateEngineError(f"Failed to deserialize metadata. {exc}") from exc


def serialize_metadata(metadata: CrateEngineMetadata) -> bytes:
    writer = _WRITERS[metadata.VERSION]()
    metadata.write(writer)
    return struct.pack('<H', metadata.VERSION) + writer.getvalue()
