from __future__ import annotations

import io

import pytest

from engine_crane.automation.types import AspirationType, BlockConfig, BlockType, HeadConfig, Valves
from engine_crane.crate_engine.metadata import (BEAM_NG_MOD_SOURCE_ID, DIRECT_EXPORT_SOURCE_ID, DataSource,
                                                EngineFigures, MetadataV1, MetadataV3, read_metadata,
                                                serialize_metadata)
from engine_crane.errors import CrateEngineError

HASH_A = bytes(range(32))
HASH_B = bytes(range(32, 64))


def _peaks() -> EngineFigures:
    return EngineFigures(capacity=4998, aspiration=AspirationType('NA'), fuel='Premium', peak_power=320,
                         peak_power_rpm=6500, peak_torque=500, peak_torque_rpm=4000, max_rpm=7000)


def _v3(**overrides) -> MetadataV3:
    values = dict(
        source=DataSource.from_beam_ng_mod([HASH_A, None]),
        data_version=1,
        automation_version=2400000000,
        name='Test Family - Test Variant',
        build_year=2002,
        block_type=BlockType('V'),
        head_config=HeadConfig('DOHC'),
        cylinders=8,
        valves=Valves('Four'),
        peaks=_peaks(),
    )
    values.update(overrides)
    return MetadataV3(**values)


def test_v3_header():
    metadata = _v3()
    data = serialize_metadata(metadata)
    assert data[:2] == b'\x03\x00'
    decoded = read_metadata(io.BytesIO(data))
    assert decoded == metadata
    assert decoded.get_version_u16() == 3
    assert decoded.block_description() == 'V8 DOHC 4v'
    assert decoded.block_config is None
    assert decoded.peak_power == 320
    assert decoded.capacity == 4998


def test_unknown_variants_keep_their_text():
    metadata = _v3(block_type=BlockType('Unknown', 'EngBlock_W12_Name'), valves=Valves.from_int(7))
    decoded = read_metadata(io.BytesIO(serialize_metadata(metadata)))
    assert decoded.block_type == BlockType('Unknown', 'EngBlock_W12_Name')
    assert str(decoded.valves) == '7'


def test_v1_header():
    metadata = MetadataV1(
        data_version=1, automation_version=2200000000, name='Old Engine', engine_jbeam_hash=HASH_A,
        automation_data_hash=HASH_B, build_year=1990, block_config=BlockConfig('V8_90'),
        head_config=HeadConfig('OHV'), valves=Valves('Two'), peaks=_peaks())
    decoded = read_metadata(io.BytesIO(serialize_metadata(metadata)))
    assert decoded == metadata
    assert decoded.get_source() == DataSource(BEAM_NG_MOD_SOURCE_ID, [HASH_A, HASH_B])
    assert decoded.cylinders == 8
    assert decoded.block_type is None
    assert decoded.block_description() == '90° V8 OHV 2v'


def test_source_names():
    assert DataSource.from_direct_export().source_name() == 'Direct Automation Export'
    assert DataSource(BEAM_NG_MOD_SOURCE_ID).source_name() == 'BeamNG Mod'
    assert DataSource(99).source_name() == 'Unknown'
    assert DataSource.from_direct_export().source_id == DIRECT_EXPORT_SOURCE_ID


@pytest.mark.parametrize('data', [b'', b'\x03', b'\x09\x00', serialize_metadata(_v3())[:-3]])
def test_bad_headers(data):
    with pytest.raises(CrateEngineError):
        read_metadata(io.BytesIO(data))
