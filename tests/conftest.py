from __future__ import annotations

import json
import math
import sqlite3
import struct
import zipfile
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import pytest

from engine_crane.acd import encode_acd, generate_acd_key
from engine_crane.automation.car_file import Attribute, AttributeValue, CarFile, Section
from engine_crane.automation.sandbox import CURVE_COLUMNS, ROW_COLUMNS, EngineV1
from engine_crane.crate_engine.payload import DirectExportDataV1

CAR_NAME = 'ks_test_car'

CAR_INI = """\
[HEADER]
VERSION=1

[INFO]
SCREEN_NAME=Test Car

[BASIC]
TOTALMASS=1200

[FUEL]
CONSUMPTION=0.0030
FUEL=30
MAX_FUEL=60
"""

ENGINE_INI = """\
[HEADER]
VERSION=1
POWER_CURVE=power.lut
COAST_CURVE=FROM_COAST_REF

[ENGINE_DATA]
ALTITUDE_SENSITIVITY=0.1
INERTIA=0.120
LIMITER={limiter}
LIMITER_HZ=30
MINIMUM={idle}

[COAST_REF]
RPM={limiter}
TORQUE=60
NON_LINEARITY=0

[DAMAGE]
RPM_THRESHOLD={damage_rpm}
RPM_DAMAGE_K=1
"""

TURBO_SECTIONS = """
[TURBO_0]
LAG_DN=0.99
LAG_UP=0.965
MAX_BOOST=0.8
WASTEGATE=0.8
DISPLAY_MAX_BOOST=0.8
REFERENCE_RPM=4000
GAMMA=2.5
COCKPIT_ADJUSTABLE=0

[BOV]
PRESSURE_THRESHOLD=0.5
"""

CTRL_TURBO0_INI = """\
[CONTROLLER_0]
INPUT=RPMS
COMBINATOR=ADD
LUT=(0=0|3000=0.5|7000=0.8)
FILTER=0.95
UP_LIMIT=10000
DOWN_LIMIT=0
"""

POWER_LUT = "1000|150\r\n2000|200\r\n3000|250\r\n4000|280\r\n5000|300\r\n6000|290\r\n7000|260\r\n"

DRIVETRAIN_INI = """\
[TRACTION]
TYPE=RWD

[GEARS]
COUNT=6
GEAR_1=3.500
GEAR_2=2.200
GEAR_3=1.600
GEAR_4=1.250
GEAR_5=1.000
GEAR_6=0.850
GEAR_R=-3.200
FINAL=3.900

[GEARBOX]
CHANGE_UP_TIME=150
CHANGE_DN_TIME=200
AUTO_CUTOFF_TIME=150
SUPPORTS_SHIFTER=0
VALID_SHIFT_RPM_WINDOW=800
CONTROLS_WINDOW_GAIN=0.40
INERTIA=0.020

[CLUTCH]
MAX_TORQUE=300

[AUTO_SHIFTER]
UP=6700
DOWN=4500
SLIP_THRESHOLD=0.95
GAS_CUTOFF_TIME=0.28
"""

AI_INI = """\
[GEARS]
UP=6700
DOWN=4500
SLIP_THRESHOLD=0.95
GAS_CUTOFF_TIME=0.28
"""

DIGITAL_INSTRUMENTS_INI = """\
[LED_0]
OBJECT_NAME=SHIFT_LED_0
RPM_SWITCH=6500
EMISSIVE=10,0,0
DIFFUSE=0.50
BLINK_SWITCH=7000
BLINK_HZ=20

[LED_1]
OBJECT_NAME=SHIFT_LED_1
RPM_SWITCH=7000
EMISSIVE=10,0,0
DIFFUSE=0.50
BLINK_SWITCH=7200
BLINK_HZ=20
"""

LODS_INI = """\
[LOD_0]
FILE={name}.kn5
OUT=15

[LOD_1]
FILE={name}_LOD_B.kn5
IN=15
OUT=45
"""

UI_CAR_JSON = {
    'name': 'Test Car',
    'brand': 'Kunos',
    'tags': ['#Supercars', 'rwd'],
    'specs': {
        'bhp': '400bhp',
        'torque': '350Nm',
        'weight': '1200kg',
        'topspeed': '280km/h',
        'acceleration': '4.5s 0-100',
        'pwratio': '3.00kg/hp',
        'range': 50,
    },
    'torqueCurve': [['1000', '150']],
    'powerCurve': [['1000', '20']],
}


def car_data_files(name: str = CAR_NAME, limiter: int = 7000, idle: int = 1000,
                   turbo: bool = False) -> Dict[str, bytes]:
    engine_ini = ENGINE_INI.format(limiter=limiter, idle=idle, damage_rpm=limiter + 200)
    files = {
        'car.ini': CAR_INI,
        'engine.ini': engine_ini + (TURBO_SECTIONS if turbo else ''),
        'power.lut': POWER_LUT,
        'drivetrain.ini': DRIVETRAIN_INI,
        'ai.ini': AI_INI,
        'digital_instruments.ini': DIGITAL_INSTRUMENTS_INI,
        'lods.ini': LODS_INI.format(name=name),
    }
    if turbo:
        files['ctrl_turbo0.ini'] = CTRL_TURBO0_INI
    return {filename: text.encode('utf-8') for filename, text in files.items()}


@pytest.fixture
def cars_dir(tmp_path: Path) -> Path:
    path = tmp_path / 'cars'
    path.mkdir()
    return path


@pytest.fixture
def make_car(cars_dir: Path):
    """Build an installed AC car from literal data files; ``packed`` puts them in data.acd."""
    def build(name: str = CAR_NAME, limiter: int = 7000, idle: int = 1000, turbo: bool = False,
              packed: bool = False, extra_data: Optional[Dict[str, bytes]] = None,
              sfx_guids: Optional[str] = None) -> Path:
        car_path = cars_dir / name
        car_path.mkdir()
        files = car_data_files(name, limiter, idle, turbo)
        files.update(extra_data or {})
        if packed:
            (car_path / 'data.acd').write_bytes(encode_acd(files, generate_acd_key(name)))
        else:
            data_dir = car_path / 'data'
            data_dir.mkdir()
            for filename, content in files.items():
                (data_dir / filename).write_bytes(content)
        (car_path / 'ui').mkdir()
        (car_path / 'ui' / 'ui_car.json').write_text(json.dumps(UI_CAR_JSON, indent=2), encoding='utf-8')
        (car_path / f"{name}.kn5").write_bytes(b'kn5')
        (car_path / f"{name}_LOD_B.kn5").write_bytes(b'kn5')
        (car_path / 'sfx').mkdir()
        (car_path / 'sfx' / f"{name}.bank").write_bytes(b'bank')
        if sfx_guids is not None:
            (car_path / 'sfx' / 'GUIDs.txt').write_text(sfx_guids, encoding='utf-8')
        return car_path
    return build


@pytest.fixture
def master_sfx_guids(tmp_path: Path) -> Path:
    path = tmp_path / 'content_sfx' / 'GUIDs.txt'
    path.parent.mkdir()
    path.write_text(
        f"{{0f4b1a2c}} bank:/{CAR_NAME}\n"
        f"{{9a1c2b3d}} event:/cars/{CAR_NAME}/engine_ext\n"
        f"{{9a1c2b3e}} event:/cars/{CAR_NAME}/engine_int\n"
        "{77aa88bb} bank:/other_car\n"
        "{77aa88bc} event:/cars/other_car/engine_ext\n",
        encoding='utf-8')
    return path


# Automation fixtures

ENGINE_UID = 'ABCDE0123456789ABCDEF0123456789A'
FAMILY_UID = 'F0123456789ABCDEF0123456789ABCDE'
ENGINE_RPMS = [1000.0, 2000.0, 3000.0, 4000.0, 5000.0, 6000.0, 7000.0]
ENGINE_TORQUE = [300.0, 400.0, 480.0, 500.0, 490.0, 460.0, 420.0]

_ENGINE_VALUES = {
    'uuid': ENGINE_UID,
    'family_version': 2400000000,
    'variant_version': 2400000000,
    'family_uuid': FAMILY_UID,
    'family_name': 'Test Family',
    'variant_name': 'Test Variant',
    'family_game_days': 21600,
    'variant_game_days': 22320,
    'family_quality': 1,
    'block_config': 'EngBlock_V8_Name',
    'head_type': 'Head_DuelOHC_Name',
    'valves': 'ValveCount_4_Name',
    'aspiration': 'Aspiration_Natural_Name',
    'fuel_type': 'Fuel_Type_Premium_Name',
    'max_bore': 92.0,
    'max_stroke': 86.0,
    'bore': 90.5,
    'stroke': 84.25,
    'capacity': 5.0,
    'compression': 10.5,
    'rpm_limit': 7000.0,
    'idle_speed': 900.0,
    'max_rpm': 7000.0,
    'peak_power': 320.0,
    'peak_power_rpm': 6500.0,
    'peak_torque': 500.0,
    'peak_torque_rpm': 4000.0,
    'weight': 180.0,
    'econ': 250.0,
    'responsiveness': 45.0,
}


def _default_for(kind) -> object:
    if kind is str:
        return 'Default'
    if kind is int:
        return 1
    return 1.5


def engine_values(**overrides) -> Dict[str, object]:
    values: Dict[str, object] = {}
    for attr, _, kind, required in ROW_COLUMNS:
        values[attr] = _ENGINE_VALUES.get(attr, _default_for(kind) if required else None)
    values['rpm_curve'] = list(ENGINE_RPMS)
    values['torque_curve'] = list(ENGINE_TORQUE)
    values['power_curve'] = [t * r * 2 * math.pi / 60000 for r, t in zip(ENGINE_RPMS, ENGINE_TORQUE)]
    values['boost_curve'] = [0.0] * len(ENGINE_RPMS)
    values['econ_curve'] = [300.0] * len(ENGINE_RPMS)
    values['econ_eff_curve'] = [27.0] * len(ENGINE_RPMS)
    values.update(overrides)
    return values


@pytest.fixture
def make_engine():
    def build(**overrides) -> EngineV1:
        return EngineV1(**engine_values(**overrides))
    return build


_FAMILY_KEYS = [
    ('GameVersion', 'family_version'),
    ('UID', 'family_uuid'),
    ('Name', 'family_name'),
    ('InternalDays', 'family_game_days'),
    ('QualityFamily', 'family_quality'),
    ('BlockConfig', 'block_config'),
    ('BlockMaterial', 'block_material'),
    ('BlockType', 'block_type'),
    ('Head', 'head_type'),
    ('HeadMaterial', 'head_material'),
    ('Valves', 'valves'),
    ('Stroke', 'max_stroke'),
    ('Bore', 'max_bore'),
]

_ALIASED_COLUMNS = {
    'v_uuid': ('Variants', 'UID'),
    'f_version': ('Families', 'GameVersion'),
    'v_version': ('Variants', 'GameVersion'),
    'f_uuid': ('Families', 'UID'),
    'f_name': ('Families', 'Name'),
    'v_name': ('Variants', 'Name'),
    'f_days': ('Families', 'InternalDays'),
    'v_days': ('Variants', 'InternalDays'),
    'MaxBore': ('Families', 'Bore'),
    'MaxStroke': ('Families', 'Stroke'),
    'VBore': ('Variants', 'Bore'),
    'VStroke': ('Variants', 'Stroke'),
}
_FAMILY_COLUMNS = {key for key, _ in _FAMILY_KEYS}
_FIRST_RESULT_COLUMN = 'AdjustedAFR'


def _table_layout() -> Dict[str, List[tuple]]:
    """Sandbox tables as (column, EngineV1 attribute) lists."""
    tables: Dict[str, List[tuple]] = {
        'Families': [],
        'Variants': [('FUID', 'family_uuid')],
        'EngineResults': [('UID', 'uuid')],
        'EngineCurves': [('UID', 'uuid')],
    }
    in_results = False
    for attr, column, _, _ in ROW_COLUMNS:
        in_results = in_results or column == _FIRST_RESULT_COLUMN
        if column in _ALIASED_COLUMNS:
            table, name = _ALIASED_COLUMNS[column]
        elif in_results:
            table, name = 'EngineResults', column
        elif column in _FAMILY_COLUMNS:
            table, name = 'Families', column
        else:
            table, name = 'Variants', column
        tables[table].append((name, attr))
    for attr, column in CURVE_COLUMNS:
        tables['EngineCurves'].append((column, attr))
    return tables


def _variant_keys() -> List[tuple]:
    keys = [('GameVersion', 'variant_version'), ('FUID', 'family_uuid'), ('UID', 'uuid'),
            ('Name', 'variant_name'), ('InternalDays', 'variant_game_days'),
            ('Bore', 'bore'), ('Stroke', 'stroke')]
    for column, attr in _table_layout()['Variants']:
        if column not in dict(keys):
            keys.append((column, attr))
    return keys


def encode_curve(values: Iterable[float]) -> bytes:
    values = list(values)
    records = b''.join(b'\x00' * 10 + struct.pack('<d', v) for v in values)
    return b'\x00\x00' + struct.pack('<Q', len(values)) + records


@pytest.fixture
def make_sandbox_db(tmp_path: Path):
    """Write a sandbox database holding the given engines; ``omit`` leaves columns out."""
    def build(*engines: EngineV1, name: str = 'Sandbox_test.db', omit: Iterable[str] = ()) -> Path:
        omit = set(omit)
        path = tmp_path / name
        conn = sqlite3.connect(str(path))
        try:
            for table, columns in _table_layout().items():
                columns = [(c, a) for c, a in columns if c not in omit]
                conn.execute(f'create table "{table}" ({", ".join(chr(34) + c + chr(34) for c, _ in columns)})')
                rows = []
                seen = set()
                for engine in engines:
                    if table == 'Families':
                        if engine.family_uuid in seen:
                            continue
                        seen.add(engine.family_uuid)
                    row = []
                    for column, attr in columns:
                        value = getattr(engine, attr)
                        if table == 'EngineCurves' and column != 'UID':
                            value = encode_curve(value)
                        row.append(value)
                    rows.append(row)
                placeholders = ', '.join('?' for _ in columns)
                conn.executemany(f'insert into "{table}" values ({placeholders})', rows)
            conn.commit()
        finally:
            conn.close()
        return path
    return build


def _attribute(name: str, value: object) -> Attribute:
    if isinstance(value, str):
        return Attribute(name, AttributeValue.text(value))
    return Attribute(name, AttributeValue.number(value))


def _section(name: str, attributes: List[Attribute]) -> Section:
    section = Section(name, 0, len(attributes))
    for attribute in attributes:
        section.add(attribute)
    return section


@pytest.fixture
def make_car_file():
    """The ``.car`` tree Automation would export for ``engine``; ``results`` adds Variant result values."""
    def build(engine: EngineV1, results: Optional[Dict[str, float]] = None, legacy: bool = False,
              overrides: Optional[Dict[str, object]] = None) -> CarFile:
        overrides = overrides or {}
        family_keys = list(_FAMILY_KEYS)
        if legacy:
            family_keys = [(k, a) for k, a in family_keys if k != 'QualityFamily'] + [('VVL', 'vvl')]
        family = [_attribute(key, getattr(engine, attr)) for key, attr in family_keys]
        variant = []
        for key, attr in _variant_keys():
            value = overrides.get(key, getattr(engine, attr))
            if value is not None:
                variant.append(_attribute(key, value))
        for key, value in (results or {}).items():
            variant.append(_attribute(key, value))
        car = _section('Car', [
            _attribute('Version', 2100000000 if legacy else 2400000000),
            _section('Family', family),
            _section('Variant', variant),
        ])
        return CarFile(pad_byte=0, children=[car])
    return build


MAIN_ENGINE_JBEAM = """\
{
    "Camso_Engine_ABCDE": {
        "information": {
            "authors": "Automation",
            "name": "Test Family - Test Variant",
            "value": 12000,
        },
        "slotType": "Camso_Engine",
        // power train
        "mainEngine": {
            "torque": [
                ["rpm", "torque"]
                [0, 0],
                [1000, 300],
            ],
            "idleRPM": 900,
            "maxRPM": 7000,
            "inertia": "$=0.15*$inertia_scale",
            "friction": 12,
            "dynamicFriction": 0.02,
            "engineBrakeTorque": 24
        }
    }
}
"""

STRUCTURE_JBEAM = """\
{
    "Camso_Engine_Structure_ABCDE": {
        "information": {"name": "Engine Structure"},
        /* not the main engine */
        "slotType": "Camso_Engine_Structure"
    }
}
"""


@pytest.fixture
def make_beamng_mod(tmp_path: Path, make_car_file):
    """Zip the files Automation's BeamNG exporter writes for ``engine``."""
    def build(engine: EngineV1, car_file: Optional[CarFile] = None, name: str = 'test_engine.zip',
              jbeam: str = MAIN_ENGINE_JBEAM, include_car: bool = True) -> Path:
        car_file = car_file if car_file is not None else make_car_file(engine)
        uid5 = engine.uuid[:5]
        path = tmp_path / name
        with zipfile.ZipFile(path, 'w') as zf:
            zf.writestr('mod_info/ABCDE/info.json', json.dumps({'title': 'Test Engine'}))
            zf.writestr(f'vehicles/test_car/eng_{uid5}/camso_engine_{uid5}.jbeam', jbeam)
            zf.writestr(f'vehicles/test_car/eng_{uid5}/camso_engine_structure_{uid5}.jbeam', STRUCTURE_JBEAM)
            if include_car:
                zf.writestr('vehicles/test_car/test_car.car', car_file.to_bytes())
            zf.writestr('vehicles/test_car/license.txt', 'CC BY-NC')
        return path
    return build


def direct_export_data(max_rpm: float = 8500.0, turbo: bool = False) -> DirectExportDataV1:
    data = DirectExportDataV1(exporter_script_version=3)
    data.add_string('Info', 'FamilyName', 'Export Family')
    data.add_string('Info', 'VariantName', 'Export Variant')
    data.add_string('Parts', 'Aspiration', 'Aspiration_Turbo_Name' if turbo else 'Aspiration_Natural_Name')
    data.add_string('Parts', 'BlockConfig', 'EngBlock_Inl4_Name')
    data.add_string('Parts', 'HeadConfig', 'Head_DuelOHC_Name')
    data.add_string('Parts', 'ValveType', 'ValveCount_4_Name')
    data.add_string('Parts', 'FuelType', 'Premium')
    data.add_float('Info', 'GameVersion', 2400000000)
    data.add_float('Info', 'VariantYear', 2004)
    data.add_float('Tune', 'Displacement', 2.0)
    for key, value in (('Weight', 150.0), ('Responsiveness', 50.0), ('IdleRPM', 900.0), ('MaxRPM', max_rpm),
                       ('PeakPower', 250.0), ('PeakPowerRPM', 7500.0), ('PeakTorque', 340.0),
                       ('PeakTorqueRPM', 5000.0), ('EconEff', 30.0)):
        data.add_float('Results', key, value)
    rpms = [1000, 2000, 3000, 4000, 5000, 6000, 7000, 8000]
    torque = [200, 260, 300, 330, 340, 335, 320, 300]
    friction = [10, 12, 14, 17, 20, 23, 26, 30]
    boost = [0.0, 0.2, 0.6, 0.9, 1.0, 1.0, 0.95, 0.9]
    for idx, rpm in enumerate(rpms, start=1):
        data.add_curve_data('RPM', idx, rpm)
        data.add_curve_data('Torque', idx, torque[idx - 1])
        data.add_curve_data('Friction', idx, friction[idx - 1])
        if turbo:
            data.add_curve_data('Boost', idx, boost[idx - 1])
    return data


@pytest.fixture
def make_direct_export():
    return direct_export_data
