"""
Sound bank GUID handling.

AC looks a car's FMOD events up by folder name, so a cloned car needs a
``sfx/GUIDs.txt`` that maps the original car's sound GUIDs onto the clone's
folder. The installation-wide ``content/sfx/GUIDs.txt`` is the source when
the car doesn't ship its own file.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List

from .errors import NotInstalled

logger = logging.getLogger(__name__)


@dataclass
class SfxData:
    events_by_folder: Dict[str, List[str]] = field(default_factory=dict)
    bank_guids: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def parse(cls, text: str) -> 'SfxData':
        """
        Lines look like ``{guid} event:/cars/<folder>/...`` or
        ``{guid} bank:/<folder>``; anything else is skipped.
        """
        sfx = cls()
        for line in text.splitlines():
            parts = line.split()
            if len(parts) < 2:
                continue
            guid, target = parts[0], parts[1]
            if target.startswith('event'):
                path_parts = target.split(':', 1)[1].split('/')
                if len(path_parts) < 3:
                    continue
                sfx.events_by_folder.setdefault(path_parts[2], []).append(line)
            elif target.startswith('bank'):
                bank_parts = target.split('/')
                if len(bank_parts) < 2:
                    continue
                sfx.bank_guids[bank_parts[1]] = guid
        return sfx

    @classmethod
    def load(cls, guids_path: Path) -> 'SfxData':
        guids_path = Path(guids_path)
        try:
            text = guids_path.read_text(encoding='utf-8', errors='ignore')
        except OSError as exc:
            raise NotInstalled(f"Couldn't open {guids_path}. {exc}") from exc
        return cls.parse(text)

    def generate_clone_guid_info(self, existing_car_name: str, new_car_name: str) -> List[str]:
        if existing_car_name not in self.bank_guids:
            return []
        out = [f"{self.bank_guids[existing_car_name]} bank:/{new_car_name}"]
        for entry in self.events_by_folder.get(existing_car_name, []):
            out.append(entry.replace(existing_car_name, new_car_name))
        return out


def update_car_sfx(car_path: Path, name_to_change: str, master_guids_path: Path) -> None:
    """Point ``sfx/GUIDs.txt`` of the car at ``car_path`` to its own folder name."""
    car_path = Path(car_path)
    guids_path = car_path / 'sfx' / 'GUIDs.txt'
    car_name = car_path.name
    if guids_path.exists():
        logger.info("Updating contents of '%s'. Replacing refs to '%s' with '%s'",
                    guids_path, name_to_change, car_name)
        lines = [line.replace(name_to_change, car_name)
                 for line in guids_path.read_text(encoding='utf-8', errors='ignore').splitlines()]
    else:
        logger.info("Generating new '%s' with contents from the installation sfx data", guids_path)
        lines = SfxData.load(master_guids_path).generate_clone_guid_info(name_to_change, car_name)
        guids_path.parent.mkdir(parents=True, exist_ok=True)
    guids_path.write_text(''.join(f"{line}\n" for line in lines), encoding='utf-8')
