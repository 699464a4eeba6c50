"""
Read-only access to Automation's sandbox database.

Each game release keeps its designs in a differently named SQLite file;
``SandboxVersion`` picks the right one from a ``.car`` GameVersion. A
variant row is joined with its family, results and curves into an
``EngineV1`` record.
"""

from __future__ import annotations

import enum
import hashlib
import logging
import sqlite3
import struct
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, List, Optional, Tuple, Union

from .. import config
from ..errors import SandboxError
from ..numeric import format_number, round_float_to, round_half_away
from .types import AspirationType, BlockConfig, BlockType, HeadConfig, Valves

logger = logging.getLogger(__name__)

ELLISBURY_MIN_VERSION = 2312150000
FOUR_DOT_TWO_MIN_VERSION = 2111220000

_LEGACY_DB = ('My Games', 'Automation', 'Sandbox_openbeta.db')
_FOUR_DOT_TWO_DB = ('AutomationGame', 'Saved', 'UserData', 'Sandbox_211122.db')
_ELLISBURY_DB = ('AutomationGame', 'Saved', 'UserData', 'Sandbox_230915.db')

_CURVE_PREFIX_LEN = 2
_CURVE_RECORD_LEN = 18
_CURVE_VALUE_OFFSET = 10

LOAD_ENGINE_BY_UUID_QUERY = """
select f.GameVersion as f_version, v.GameVersion as v_version, f.uid as f_uuid, f.name as f_name,
       f.InternalDays as f_days, f.Bore as MaxBore, f.Stroke as MaxStroke, f.*,
       v.uid as v_uuid, v.name as v_name, v.InternalDays as v_days, v.Bore as VBore, v.Stroke as VStroke, v.*,
       r.*,
       c.*
from "Variants" as v
join "Families" as f on v.FUID = f.UID
join "EngineResults" as r using(uid)
join "EngineCurves" as c using(uid)
where v_uuid = :uid;
"""

FAMILY_VARIANT_NAMES_QUERY = """
select f.name || ' - ' || v.name as "Full Name"
from "Variants" as v inner join "Families" as f on v.FUID = f.UID;
"""


class SandboxVersion(enum.Enum):
    LEGACY = 'pre 4.2'
    FOUR_DOT_TWO = 'post 4.2'
    ELLISBURY = '4.3 Ellisbury'

    @classmethod
    def from_version_number(cls, version_num: int) -> 'SandboxVersion':
        if version_num >= ELLISBURY_MIN_VERSION:
            return cls.ELLISBURY
        if version_num < FOUR_DOT_TWO_MIN_VERSION:
            return cls.LEGACY
        return cls.FOUR_DOT_TWO

    def as_str(self) -> str:
        return self.value

    def default_path(self) -> Path:
        if self is SandboxVersion.LEGACY:
            return config.automation_documents_path().joinpath(*_LEGACY_DB)
        if self is SandboxVersion.FOUR_DOT_TWO:
            return config.automation_user_data_path().joinpath(*_FOUR_DOT_TWO_DB)
        return config.automation_user_data_path().joinpath(*_ELLISBURY_DB)

    def get_path(self) -> Optional[Path]:
        """The database file for this version, or None when the game hasn't created one."""
        path = self.default_path()
        return path if path.is_file() else None

    def __str__(self) -> str:
        return self.value


def internal_days_to_year(days: int) -> int:
    return 1940 + days // 360


def decode_graph_data(blob: bytes) -> List[float]:
    """
    Curve blobs are a short prefix, a u64 point count then fixed size
    records with the f64 value sitting at offset 10 of each record.
    """
    if blob is None:
        raise SandboxError("Missing curve data")
    data = bytes(blob)[_CURVE_PREFIX_LEN:]
    if len(data) < 8:
        raise SandboxError(f"Curve data too short ({len(blob)} bytes)")
    (count,) = struct.unpack_from('<Q', data, 0)
    needed = 8 + count * _CURVE_RECORD_LEN
    if len(data) < needed:
        raise SandboxError(f"Curve data truncated; expected {count} points")
    return [struct.unpack_from('<d', data, 8 + i * _CURVE_RECORD_LEN + _CURVE_VALUE_OFFSET)[0]
            for i in range(count)]


def _num_str(value: Union[int, float]) -> bytes:
    return format_number(value).encode('utf-8')


def _rounded_str(value: float) -> bytes:
    return _num_str(round_float_to(value, 10))


def sha256_to_hex(digest: bytes) -> str:
    # each byte as upper-case hex without zero padding
    return ''.join(f"{b:X}" for b in digest)


@dataclass
class EngineV1:
    uuid: str
    family_version: int
    variant_version: int
    family_uuid: str
    family_name: str
    variant_name: str
    family_game_days: int
    variant_game_days: int
    family_quality: int
    block_config: str
    block_material: str
    block_type: str
    head_type: str
    head_material: str
    valves: str
    vvl: str
    max_bore: float
    max_stroke: float
    crank: str
    conrods: str
    pistons: str
    vvt: str
    aspiration: str
    intercooler_setting: float
    fuel_system_type: str
    fuel_system: str
    intake_manifold: str
    intake: str
    fuel_type: Optional[str]
    fuel_leaded: Optional[int]
    headers: str
    exhaust_count: str
    exhaust_bypass_valves: str
    cat: str
    muffler_1: str
    muffler_2: str
    bore: float
    stroke: float
    capacity: float
    compression: float
    cam_profile_setting: float
    vvl_cam_profile_setting: float
    afr: Optional[float]
    afr_lean: Optional[float]
    rpm_limit: float
    ignition_timing_setting: float
    exhaust_diameter: float
    quality_bottom_end: int
    quality_top_end: int
    quality_aspiration: int
    quality_fuel_system: int
    quality_exhaust: int
    balance_shaft: Optional[str]
    spring_stiffness: Optional[float]
    listed_octane: Optional[int]
    tune_octane_offset: Optional[int]
    aspiration_setup: Optional[str]
    aspiration_item_1: Optional[str]
    aspiration_item_2: Optional[str]
    aspiration_item_suboption_1: Optional[str]
    aspiration_item_suboption_2: Optional[str]
    aspiration_boost_control: Optional[str]
    charger_size_1: Optional[float]
    charger_size_2: Optional[float]
    charger_tune_1: Optional[float]
    charger_tune_2: Optional[float]
    charger_max_boost_1: Optional[float]
    charger_max_boost_2: Optional[float]
    turbine_size_1: Optional[float]
    turbine_size_2: Optional[float]
    adjusted_afr: float
    average_cruise_econ: float
    cooling_required: float
    econ: float
    econ_eff: float
    min_econ: float
    worst_econ: float
    emissions: float
    engineering_cost: float
    engineering_time: float
    idle: float
    idle_speed: float
    mttf: float
    man_hours: float
    material_cost: float
    noise: float
    peak_boost: float
    peak_boost_rpm: Optional[float]
    performance_index: float
    ron: float
    reliability_post_engineering: Optional[float]
    responsiveness: float
    service_cost: float
    smoothness: float
    tooling_costs: float
    total_cost: float
    weight: float
    peak_torque_rpm: float
    peak_torque: float
    peak_power: float
    peak_power_rpm: float
    max_rpm: float
    rpm_curve: List[float] = field(default_factory=list)
    power_curve: List[float] = field(default_factory=list)
    torque_curve: List[float] = field(default_factory=list)
    boost_curve: List[float] = field(default_factory=list)
    econ_curve: List[float] = field(default_factory=list)
    econ_eff_curve: List[float] = field(default_factory=list)

    @classmethod
    def load_from_row(cls, row: sqlite3.Row) -> 'EngineV1':
        present = set(row.keys())
        values = {}
        for attr, column, kind, required in ROW_COLUMNS:
            if column not in present:
                if required:
                    raise SandboxError(f"Sandbox row is missing column {column}")
                values[attr] = 0 if attr == 'family_quality' else None
                continue
            raw = row[column]
            if raw is None:
                if required:
                    raise SandboxError(f"Sandbox row has no value for {column}")
                values[attr] = 0 if attr == 'family_quality' else None
                continue
            values[attr] = kind(raw)
        for attr, column in CURVE_COLUMNS:
            if column not in present:
                raise SandboxError(f"Sandbox row is missing curve {column}")
            values[attr] = decode_graph_data(row[column])
        return cls(**values)

    def __str__(self) -> str:
        return f"{self.family_name}-{self.variant_name}"

    def friendly_name(self) -> str:
        return f"{self.family_name} - {self.variant_name}"

    def get_family_build_year(self) -> int:
        return internal_days_to_year(self.family_game_days)

    def get_variant_build_year(self) -> int:
        return internal_days_to_year(self.variant_game_days)

    def get_capacity_cc(self) -> int:
        return round_half_away(self.capacity * 1000.0)

    def get_block_config(self) -> BlockConfig:
        return BlockConfig.from_game_name(self.block_config)

    def get_block_type(self) -> BlockType:
        return self.get_block_config().block_type()

    def get_cylinders(self) -> int:
        return self.get_block_config().cylinders()

    def get_head_config(self) -> HeadConfig:
        return HeadConfig.from_game_name(self.head_type)

    def get_aspiration(self) -> AspirationType:
        return AspirationType.from_game_name(self.aspiration)

    def get_valve_type(self) -> Valves:
        return Valves.from_game_name(self.valves)

    def is_turbocharged(self) -> bool:
        return self.get_aspiration() == AspirationType('Turbo')

    def _hash(self, parts: Iterable[Optional[bytes]]) -> bytes:
        hasher = hashlib.sha256()
        for part in parts:
            if part is not None:
                hasher.update(part)
        return hasher.digest()

    def family_data_checksum_data(self) -> bytes:
        return self._hash([
            _num_str(self.family_version),
            self.family_uuid.encode('utf-8'),
            self.family_name.encode('utf-8'),
            _num_str(self.family_game_days),
            _num_str(self.family_quality),
            self.block_config.encode('utf-8'),
            self.block_material.encode('utf-8'),
            self.block_type.encode('utf-8'),
            self.head_type.encode('utf-8'),
            self.head_material.encode('utf-8'),
            self.valves.encode('utf-8'),
            _rounded_str(self.max_stroke),
            _rounded_str(self.max_bore),
        ])

    def family_data_checksum(self) -> str:
        return sha256_to_hex(self.family_data_checksum_data())

    def variant_data_checksum_data(self) -> bytes:
        def opt_text(value: Optional[str]) -> Optional[bytes]:
            return None if value is None else value.encode('utf-8')

        def opt_int(value: Optional[int]) -> Optional[bytes]:
            return None if value is None else _num_str(value)

        def opt_float(value: Optional[float]) -> Optional[bytes]:
            return None if value is None else _rounded_str(value)

        return self._hash([
            _num_str(self.variant_version),
            self.family_uuid.encode('utf-8'),
            self.uuid.encode('utf-8'),
            self.variant_name.encode('utf-8'),
            _num_str(self.variant_game_days),
            self.vvl.encode('utf-8'),
            self.crank.encode('utf-8'),
            self.conrods.encode('utf-8'),
            self.pistons.encode('utf-8'),
            self.vvt.encode('utf-8'),
            self.aspiration.encode('utf-8'),
            _rounded_str(self.intercooler_setting),
            self.fuel_system_type.encode('utf-8'),
            self.fuel_system.encode('utf-8'),
            opt_text(self.fuel_type),
            opt_int(self.fuel_leaded),
            self.intake_manifold.encode('utf-8'),
            self.intake.encode('utf-8'),
            self.headers.encode('utf-8'),
            self.exhaust_count.encode('utf-8'),
            self.exhaust_bypass_valves.encode('utf-8'),
            self.cat.encode('utf-8'),
            self.muffler_1.encode('utf-8'),
            self.muffler_2.encode('utf-8'),
            _rounded_str(self.bore),
            _rounded_str(self.stroke),
            _rounded_str(self.capacity),
            _rounded_str(self.compression),
            _rounded_str(self.cam_profile_setting),
            _rounded_str(self.vvl_cam_profile_setting),
            opt_float(self.afr),
            opt_float(self.afr_lean),
            _rounded_str(self.rpm_limit),
            _rounded_str(self.ignition_timing_setting),
            _rounded_str(self.exhaust_diameter),
            _num_str(self.quality_bottom_end),
            _num_str(self.quality_top_end),
            _num_str(self.quality_aspiration),
            _num_str(self.quality_fuel_system),
            _num_str(self.quality_exhaust),
            opt_text(self.balance_shaft),
            opt_float(self.spring_stiffness),
            opt_int(self.listed_octane),
            opt_int(self.tune_octane_offset),
            opt_text(self.aspiration_setup),
            opt_text(self.aspiration_item_1),
            opt_text(self.aspiration_item_2),
            opt_text(self.aspiration_item_suboption_1),
            opt_text(self.aspiration_item_suboption_2),
            opt_text(self.aspiration_boost_control),
            opt_float(self.charger_size_1),
            opt_float(self.charger_size_2),
            opt_float(self.charger_tune_1),
            opt_float(self.charger_tune_2),
            opt_float(self.charger_max_boost_1),
            opt_float(self.charger_max_boost_2),
            opt_float(self.turbine_size_1),
            opt_float(self.turbine_size_2),
        ])

    def variant_data_checksum(self) -> str:
        return sha256_to_hex(self.variant_data_checksum_data())

    def result_data_checksum_data(self) -> bytes:
        # service_cost is hashed twice; existing crate engines depend on it
        return self._hash([
            _num_str(self.adjusted_afr),
            _num_str(self.average_cruise_econ),
            _num_str(self.cooling_required),
            _num_str(self.econ),
            _num_str(self.econ_eff),
            _num_str(self.min_econ),
            _num_str(self.worst_econ),
            _num_str(self.emissions),
            _num_str(self.engineering_cost),
            _num_str(self.engineering_time),
            _num_str(self.idle),
            _num_str(self.idle_speed),
            _num_str(self.mttf),
            _num_str(self.man_hours),
            _num_str(self.material_cost),
            _num_str(self.noise),
            _num_str(self.peak_boost),
            _num_str(self.performance_index),
            _num_str(self.ron),
            None if self.reliability_post_engineering is None else _num_str(self.reliability_post_engineering),
            _num_str(self.responsiveness),
            _num_str(self.service_cost),
            _num_str(self.smoothness),
            _num_str(self.service_cost),
            _num_str(self.tooling_costs),
            _num_str(self.total_cost),
            _num_str(self.weight),
            _num_str(self.peak_torque_rpm),
            _num_str(self.peak_torque),
            _num_str(self.peak_power),
            _num_str(self.peak_power_rpm),
            _num_str(self.max_rpm),
            None if self.peak_boost_rpm is None else _num_str(self.peak_boost_rpm),
        ])

    def result_data_checksum(self) -> str:
        return sha256_to_hex(self.result_data_checksum_data())


# (attribute, column, parse, required); optional columns only exist in newer databases
ROW_COLUMNS: List[Tuple[str, str, Any, bool]] = [
    ('uuid', 'v_uuid', str, True),
    ('family_version', 'f_version', int, True),
    ('variant_version', 'v_version', int, True),
    ('family_uuid', 'f_uuid', str, True),
    ('family_name', 'f_name', str, True),
    ('variant_name', 'v_name', str, True),
    ('family_game_days', 'f_days', int, True),
    ('variant_game_days', 'v_days', int, True),
    ('family_quality', 'QualityFamily', int, False),
    ('block_config', 'BlockConfig', str, True),
    ('block_material', 'BlockMaterial', str, True),
    ('block_type', 'BlockType', str, True),
    ('head_type', 'Head', str, True),
    ('head_material', 'HeadMaterial', str, True),
    ('valves', 'Valves', str, True),
    ('vvl', 'VVL', str, True),
    ('max_bore', 'MaxBore', float, True),
    ('max_stroke', 'MaxStroke', float, True),
    ('crank', 'Crank', str, True),
    ('conrods', 'Conrods', str, True),
    ('pistons', 'Pistons', str, True),
    ('vvt', 'VVT', str, True),
    ('aspiration', 'AspirationType', str, True),
    ('intercooler_setting', 'IntercoolerSetting', float, True),
    ('fuel_system_type', 'FuelSystemType', str, True),
    ('fuel_system', 'FuelSystem', str, True),
    ('intake_manifold', 'IntakeManifold', str, True),
    ('intake', 'Intake', str, True),
    ('fuel_type', 'FuelType', str, False),
    ('fuel_leaded', 'FuelLeaded', int, False),
    ('headers', 'Headers', str, True),
    ('exhaust_count', 'ExhaustCount', str, True),
    ('exhaust_bypass_valves', 'ExhaustBypassValves', str, True),
    ('cat', 'Cat', str, True),
    ('muffler_1', 'Muffler1', str, True),
    ('muffler_2', 'Muffler2', str, True),
    ('bore', 'VBore', float, True),
    ('stroke', 'VStroke', float, True),
    ('capacity', 'Capacity', float, True),
    ('compression', 'Compression', float, True),
    ('cam_profile_setting', 'CamProfileSetting', float, True),
    ('vvl_cam_profile_setting', 'VVLCamProfileSetting', float, True),
    ('afr', 'AFR', float, False),
    ('afr_lean', 'AFRLean', float, False),
    ('rpm_limit', 'RPMLimit', float, True),
    ('ignition_timing_setting', 'IgnitionTimingSetting', float, True),
    ('exhaust_diameter', 'ExhaustDiameter', float, True),
    ('quality_bottom_end', 'QualityBottomEnd', int, True),
    ('quality_top_end', 'QualityTopEnd', int, True),
    ('quality_aspiration', 'QualityAspiration', int, True),
    ('quality_fuel_system', 'QualityFuelSystem', int, True),
    ('quality_exhaust', 'QualityExhaust', int, True),
    ('balance_shaft', 'BalanceShaft', str, False),
    ('spring_stiffness', 'SpringStiffnessSetting', float, False),
    ('listed_octane', 'ListedOctane', int, False),
    ('tune_octane_offset', 'TuneOctaneOffset', int, False),
    ('aspiration_setup', 'AspirationSetup', str, False),
    ('aspiration_item_1', 'AspirationItemOption_1', str, False),
    ('aspiration_item_2', 'AspirationItemOption_2', str, False),
    ('aspiration_item_suboption_1', 'AspirationItemSubOption_1', str, False),
    ('aspiration_item_suboption_2', 'AspirationItemSubOption_2', str, False),
    ('aspiration_boost_control', 'AspirationBoostControl', str, False),
    ('charger_size_1', 'ChargerSize_1', float, False),
    ('charger_size_2', 'ChargerSize_2', float, False),
    ('charger_tune_1', 'ChargerTune_1', float, False),
    ('charger_tune_2', 'ChargerTune_2', float, False),
    ('charger_max_boost_1', 'ChargerMaxBoost_1', float, False),
    ('charger_max_boost_2', 'ChargerMaxBoost_2', float, False),
    ('turbine_size_1', 'TurbineSize_1', float, False),
    ('turbine_size_2', 'TurbineSize_2', float, False),
    ('adjusted_afr', 'AdjustedAFR', float, True),
    ('average_cruise_econ', 'AverageCruiseEcon', float, True),
    ('cooling_required', 'CoolingRequired', float, True),
    ('econ', 'Econ', float, True),
    ('econ_eff', 'EconEff', float, True),
    ('min_econ', 'MinEcon', float, True),
    ('worst_econ', 'WorstEcon', float, True),
    ('emissions', 'Emissions', float, True),
    ('engineering_cost', 'EngineeringCost', float, True),
    ('engineering_time', 'EngineeringTime', float, True),
    ('idle', 'Idle', float, True),
    ('idle_speed', 'IdleSpeed', float, True),
    ('mttf', 'MTTF', float, True),
    ('man_hours', 'ManHours', float, True),
    ('material_cost', 'MaterialCost', float, True),
    ('noise', 'Noise', float, True),
    ('peak_boost', 'PeakBoost', float, True),
    ('peak_boost_rpm', 'PeakBoostRPM', float, False),
    ('performance_index', 'PerformanceIndex', float, True),
    ('ron', 'RON', float, True),
    ('reliability_post_engineering', 'ReliabilityPostEngineering', float, False),
    ('responsiveness', 'Responsiveness', float, True),
    ('service_cost', 'ServiceCost', float, True),
    ('smoothness', 'Smoothness', float, True),
    ('tooling_costs', 'ToolingCosts', float, True),
    ('total_cost', 'TotalCost', float, True),
    ('weight', 'Weight', float, True),
    ('peak_torque_rpm', 'PeakTorqueRPM', float, True),
    ('peak_torque', 'PeakTorque', float, True),
    ('peak_power', 'PeakPower', float, True),
    ('peak_power_rpm', 'PeakPowerRPM', float, True),
    ('max_rpm', 'MaxRPM', float, True),
]

CURVE_COLUMNS: List[Tuple[str, str]] = [
    ('rpm_curve', 'RPMCurve'),
    ('power_curve', 'PowerCurve'),
    ('torque_curve', 'TorqueCurve'),
    ('boost_curve', 'BoostCurve'),
    ('econ_curve', 'EconCurve'),
    ('econ_eff_curve', 'EconEffCurve'),
]


def _connect_read_only(db_path: Path) -> sqlite3.Connection:
    uri = f"{Path(db_path).resolve().as_uri()}?mode=ro"
    conn = sqlite3.connect(uri, uri=True)
    conn.row_factory = sqlite3.Row
    return conn


def resolve_db_path(version: SandboxVersion, db_path: Optional[Path] = None) -> Path:
    if db_path is not None:
        db_path = Path(db_path)
        if not db_path.is_file():
            raise SandboxError(f"No sandbox db file at {db_path}")
        return db_path
    found = version.get_path()
    if found is None:
        raise SandboxError(f"No sandbox db file available for {version}")
    return found


def load_engine_by_uuid(uuid: str, version: SandboxVersion,
                        db_path: Optional[Path] = None) -> Optional[EngineV1]:
    """Returns None when the database has no variant with that uid."""
    db_path = resolve_db_path(version, db_path)
    logger.info("Loading %s from %s", uuid, db_path)
    try:
        conn = _connect_read_only(db_path)
    except sqlite3.Error as exc:
        raise SandboxError(f"Failed to connect to {db_path}. {exc}") from exc
    try:
        row = conn.execute(LOAD_ENGINE_BY_UUID_QUERY, {'uid': uuid}).fetchone()
    except sqlite3.Error as exc:
        raise SandboxError(f"Failed to query sandbox db for engine data. {exc}") from exc
    finally:
        conn.close()
    if row is None:
        return None
    return EngineV1.load_from_row(row)


def get_engine_names(version: SandboxVersion, db_path: Optional[Path] = None) -> List[str]:
    db_path = resolve_db_path(version, db_path)
    try:
        conn = _connect_read_only(db_path)
        try:
            return [row["Full Name"] for row in conn.execute(FAMILY_VARIANT_NAMES_QUERY)]
        finally:
            conn.close()
    except sqlite3.Error as exc:
        raise SandboxError(f"Failed to read engine names from {db_path}. {exc}") from exc
