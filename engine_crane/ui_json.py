from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from .errors import UiJsonError

logger = logging.getLogger(__name__)

UI_JSON_RELATIVE_PATH = Path('ui') / 'ui_car.json'

SpecValue = Union[str, int]
_STRING_SPECS = ('bhp', 'torque', 'weight', 'topspeed', 'acceleration', 'pwratio')


class UiInfo:
    """
    The car's ``ui/ui_car.json``.

    Only the keys engine-crane edits get accessors; everything else in the
    document is carried through untouched.
    """

    def __init__(self, path: Path, data: Dict[str, Any]) -> None:
        self.path = Path(path)
        self.data = data

    @classmethod
    def load(cls, path: Path) -> 'UiInfo':
        path = Path(path)
        try:
            raw = path.read_text(encoding='utf-8-sig', errors='ignore')
        except OSError as exc:
            raise UiJsonError(f"Couldn't read {path}. {exc}") from exc
        # AC's own files contain raw newlines and tabs inside strings.
        cleaned = raw.replace('\r\n', '\n').replace('\n', ' ').replace('\t', '  ')
        try:
            data = json.loads(cleaned)
        except json.JSONDecodeError as exc:
            raise UiJsonError(f"Couldn't decode {path}. {exc}") from exc
        if not isinstance(data, dict):
            raise UiJsonError(f"{path} doesn't contain a JSON object")
        return cls(path, data)

    @classmethod
    def load_from_car(cls, car_path: Path) -> 'UiInfo':
        return cls.load(Path(car_path) / UI_JSON_RELATIVE_PATH)

    def write(self) -> None:
        try:
            self.path.write_text(json.dumps(self.data, indent=2, ensure_ascii=False), encoding='utf-8')
        except OSError as exc:
            raise UiJsonError(f"Couldn't write {self.path}. {exc}") from exc

    def _get_str(self, key: str) -> Optional[str]:
        value = self.data.get(key)
        return value if isinstance(value, str) else None

    def _set_str(self, key: str, value: str) -> None:
        current = self.data.get(key)
        if current is None or isinstance(current, str):
            self.data[key] = value
        else:
            logger.warning("Not replacing non-string '%s' in %s", key, self.path)

    def name(self) -> Optional[str]:
        return self._get_str('name')

    def set_name(self, name: str) -> None:
        self._set_str('name', name)

    def parent(self) -> Optional[str]:
        return self._get_str('parent')

    def set_parent(self, parent: str) -> None:
        self._set_str('parent', parent)

    def brand(self) -> Optional[str]:
        return self._get_str('brand')

    def description(self) -> Optional[str]:
        return self._get_str('description')

    def car_class(self) -> Optional[str]:
        return self._get_str('class')

    def tags(self) -> Optional[List[str]]:
        value = self.data.get('tags')
        if not isinstance(value, list):
            return None
        return [v for v in value if isinstance(v, str)]

    def has_tag(self, tag: str) -> bool:
        return tag in (self.tags() or [])

    def _tag_list(self) -> list:
        tags = self.data.setdefault('tags', [])
        if not isinstance(tags, list):
            raise UiJsonError("'tags' element of ui data couldn't be accessed")
        return tags

    def add_tag(self, tag: str) -> None:
        self._tag_list().append(tag)

    def add_tag_if_unique(self, tag: str) -> bool:
        """Returns True when the tag was added."""
        tags = self._tag_list()
        if tag in tags:
            return False
        tags.append(tag)
        return True

    def specs(self) -> Optional[Dict[str, SpecValue]]:
        value = self.data.get('specs')
        if not isinstance(value, dict):
            return None
        out: Dict[str, SpecValue] = {}
        for key, spec in value.items():
            if key in _STRING_SPECS and isinstance(spec, str):
                out[key] = spec
            elif key == 'range' and isinstance(spec, int) and not isinstance(spec, bool):
                out[key] = spec
        return out

    def update_spec(self, key: str, value: str) -> None:
        specs = self.data.setdefault('specs', {})
        if not isinstance(specs, dict):
            raise UiJsonError("'specs' element of ui data couldn't be accessed")
        specs.pop(key, None)
        specs[key] = value

    def _curve(self, key: str) -> Optional[List[List[str]]]:
        value = self.data.get(key)
        if not isinstance(value, list):
            return None
        return [[v for v in point if isinstance(v, str)] for point in value if isinstance(point, list)]

    def _update_curve(self, key: str, curve: Iterable[Tuple[int, int]]) -> None:
        points = [[str(int(x)), str(int(y))] for x, y in curve]
        current = self.data.get(key)
        if current is not None and not isinstance(current, list):
            raise UiJsonError(f"Couldn't access {key} curve data")
        self.data[key] = points

    def torque_curve(self) -> Optional[List[List[str]]]:
        return self._curve('torqueCurve')

    def update_torque_curve(self, curve: Iterable[Tuple[int, int]]) -> None:
        self._update_curve('torqueCurve', curve)

    def power_curve(self) -> Optional[List[List[str]]]:
        return self._curve('powerCurve')

    def update_power_curve(self, curve: Iterable[Tuple[int, int]]) -> None:
        self._update_curve('powerCurve', curve)
