"""
BeamNG mod zips as exported by Automation.

A mod bundles the engine's ``.jbeam`` part files, the ``.car`` blob the
export was made from, and optionally ``info.json`` and a license. JBeam
itself is relaxed JSON (comments, missing and trailing commas) so it is
normalised into strict JSON before decoding.
"""

from __future__ import annotations

import json
import logging
import zipfile
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Optional, Tuple

from . import config
from .errors import BeamNGModError

logger = logging.getLogger(__name__)

ENGINE_PART_PREFIX = 'Camso_Engine'
LEGACY_MAIN_ENGINE_FILENAME = 'camso_engine.jbeam'
_NON_MAIN_ENGINE_MARKERS = ('structure', 'internals', 'balancing')

_PUNCTUATION = '{}[]:,'
_WHITESPACE = ' \t\r\n\f\v'


def list_mods(mods_dir: Optional[Path] = None) -> List[Path]:
    """Every ``.zip`` directly inside ``mods_dir`` (the game's mod folder by default)."""
    mods_dir = Path(mods_dir) if mods_dir is not None else config.beamng_mods_path()
    if not mods_dir.is_dir():
        logger.warning("The BeamNG mod path %s does not exist", mods_dir)
        return []
    logger.info("Looking for BeamNG mods in %s", mods_dir)
    return sorted(p for p in mods_dir.iterdir() if p.is_file() and p.suffix.lower() == '.zip')


def _tokenize(text: str) -> List[str]:
    tokens: List[str] = []
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch in _WHITESPACE:
            i += 1
        elif ch == '/' and text.startswith('//', i):
            end = text.find('\n', i)
            i = n if end == -1 else end + 1
        elif ch == '/' and text.startswith('/*', i):
            end = text.find('*/', i + 2)
            if end == -1:
                raise BeamNGModError("Unterminated block comment in jbeam data")
            i = end + 2
        elif ch == '"':
            j = i + 1
            while j < n and text[j] != '"':
                j += 2 if text[j] == '\\' else 1
            if j >= n:
                raise BeamNGModError("Unterminated string in jbeam data")
            tokens.append(text[i:j + 1])
            i = j + 1
        elif ch in _PUNCTUATION:
            tokens.append(ch)
            i += 1
        else:
            j = i
            while j < n and text[j] not in _WHITESPACE and text[j] not in _PUNCTUATION and text[j] != '"' \
                    and not text.startswith('//', j) and not text.startswith('/*', j):
                j += 1
            tokens.append(text[i:j])
            i = j
    return tokens


def _ends_value(token: str) -> bool:
    return token not in ('{', '[', ':', ',')


def _starts_value(token: str) -> bool:
    return token not in ('}', ']', ':', ',')


def to_strict_json(text: str) -> str:
    """Rewrite jbeam text as JSON: comments dropped, missing commas added, trailing commas removed."""
    tokens = _tokenize(text)
    out: List[str] = []
    for idx, token in enumerate(tokens):
        if token == ',':
            following = tokens[idx + 1] if idx + 1 < len(tokens) else None
            if following is None or following in ('}', ']', ','):
                continue
            if not out or out[-1] in ('{', '[', ','):
                continue
        elif out and _ends_value(out[-1]) and _starts_value(token):
            out.append(',')
        out.append(token)
    return ''.join(out)


def loads_jbeam(data: bytes) -> Dict[str, Any]:
    try:
        text = data.decode('utf-8-sig')
    except UnicodeDecodeError as exc:
        raise BeamNGModError(f"jbeam data isn't valid utf-8. {exc}") from exc
    try:
        decoded = json.loads(to_strict_json(text))
    except json.JSONDecodeError as exc:
        raise BeamNGModError(f"Failed to decode jbeam data. {exc}") from exc
    if not isinstance(decoded, dict):
        raise BeamNGModError("jbeam data isn't an object")
    return decoded


def find_engine_part(jbeam_data: Dict[str, Any]) -> Tuple[str, Optional[Dict[str, Any]]]:
    """The ``Camso_Engine_<id>`` part (or the legacy ``Camso_Engine``) and its body."""
    engine_key = ENGINE_PART_PREFIX
    for key in jbeam_data:
        if key.startswith(ENGINE_PART_PREFIX + '_'):
            engine_key = key
            break
    part = jbeam_data.get(engine_key)
    return engine_key, part if isinstance(part, dict) else None


def get_name_from_jbeam_data(engine_data: bytes) -> Optional[str]:
    try:
        data_map = loads_jbeam(engine_data)
    except BeamNGModError as exc:
        logger.debug("Couldn't read engine name from jbeam. %s", exc)
        return None
    _, part = find_engine_part(data_map)
    if part is None:
        return None
    info = part.get('information')
    if not isinstance(info, dict):
        return None
    name = info.get('name')
    return name if isinstance(name, str) else None


def is_candidate_main_engine_file(filename: str) -> bool:
    if 'camso_engine_' not in filename:
        return False
    return not any(marker in filename for marker in _NON_MAIN_ENGINE_MARKERS)


def find_main_engine_jbeam_filename(variant_uid: str, jbeam_filenames: List[str]) -> Optional[str]:
    """
    ``camso_engine_<first 5 of uid>.jbeam`` when present, then the legacy
    ``camso_engine.jbeam``, then any other engine file that isn't one of
    the structure/internals/balancing parts.
    """
    expected = f"camso_engine_{variant_uid[:5]}.jbeam"
    logger.info("Expect to find engine data in %s", expected)
    if expected in jbeam_filenames:
        return expected
    if LEGACY_MAIN_ENGINE_FILENAME in jbeam_filenames:
        return LEGACY_MAIN_ENGINE_FILENAME
    for name in jbeam_filenames:
        if is_candidate_main_engine_file(name):
            return name
    return None


class ModData:
    """The parts of a mod zip engine-crane cares about, read into memory."""

    def __init__(self, mod_path: Path, info_json_data: Optional[bytes], car_file_data: Optional[bytes],
                 jbeam_file_data: Dict[str, bytes], license_data: Optional[bytes]) -> None:
        self.mod_path = Path(mod_path)
        self.info_json_data = info_json_data
        self.car_file_data = car_file_data
        self.jbeam_file_data = jbeam_file_data
        self.license_data = license_data

    @classmethod
    def from_path(cls, mod_path: Path) -> 'ModData':
        mod_path = Path(mod_path)
        logger.debug("Opening %s", mod_path)
        info_json_data = None
        car_file_data = None
        license_data = None
        jbeam_file_data: Dict[str, bytes] = {}
        try:
            with zipfile.ZipFile(mod_path, 'r') as zf:
                for entry in zf.infolist():
                    if entry.is_dir():
                        continue
                    name = entry.filename
                    basename = PurePosixPath(name).name
                    if name.endswith('info.json'):
                        info_json_data = zf.read(entry)
                    elif name.endswith('.car'):
                        car_file_data = zf.read(entry)
                    elif name.endswith('.jbeam'):
                        jbeam_file_data[basename] = zf.read(entry)
                    elif basename.lower().endswith('license.txt'):
                        license_data = zf.read(entry)
        except (OSError, zipfile.BadZipFile) as exc:
            raise BeamNGModError(f"Failed to read archive {mod_path}. {exc}") from exc
        if car_file_data is None:
            logger.info("No .car file found in %s", mod_path)
        return cls(mod_path, info_json_data, car_file_data, jbeam_file_data, license_data)

    def get_automation_car_file_data(self) -> Optional[bytes]:
        return self.car_file_data

    def contains_jbeam_file(self, filename: str) -> bool:
        return filename in self.jbeam_file_data

    def jbeam_filenames(self) -> List[str]:
        return list(self.jbeam_file_data)

    def get_info_json(self) -> str:
        if self.info_json_data is None:
            raise BeamNGModError(f"No info.json in {self.mod_path}")
        try:
            text = self.info_json_data.decode('utf-8-sig')
        except UnicodeDecodeError as exc:
            raise BeamNGModError(f"info.json isn't valid utf-8. {exc}") from exc
        return text

    def get_jbeam_data(self, filename: str) -> Dict[str, Any]:
        if filename not in self.jbeam_file_data:
            raise BeamNGModError(f"No {filename} in {self.mod_path}")
        return loads_jbeam(self.jbeam_file_data[filename])

    def take_jbeam_file_data(self) -> Dict[str, bytes]:
        data, self.jbeam_file_data = self.jbeam_file_data, {}
        return data

    def take_license_data(self) -> Optional[bytes]:
        data, self.license_data = self.license_data, None
        return data
