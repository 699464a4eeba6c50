"""
Uniform access to the files making up a car's ``data`` namespace.

A car keeps its physics data either unpacked in ``data/`` or packed in
``data.acd``. Both are wrapped here behind the same five operations:
``get``, ``contains``, ``update``, ``remove`` and ``flush``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Optional, Union

from .acd import AcdArchive
from .errors import AcdError, CarIOError

logger = logging.getLogger(__name__)


class DataFolderInterface:
    """
    An unpacked ``data/`` directory.

    Updates and removals are queued and only hit the disk on ``flush``;
    ``get`` always reads what is currently on disk.
    """

    def __init__(self, data_folder_path: Path, create: bool = False) -> None:
        data_folder_path = Path(data_folder_path)
        if not data_folder_path.is_dir():
            if not create:
                raise CarIOError(f"Directory {data_folder_path} doesn't exist")
            data_folder_path.mkdir(parents=True)
        self.data_folder_path = data_folder_path
        self.pending: Dict[str, Optional[bytes]] = {}

    def _path(self, filename: str) -> Path:
        return self.data_folder_path / filename

    def get(self, filename: str) -> Optional[bytes]:
        try:
            return self._path(filename).read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise CarIOError(f"Failed to read {filename}. {exc}") from exc

    def contains(self, filename: str) -> bool:
        if filename in self.pending:
            return self.pending[filename] is not None
        return self._path(filename).is_file()

    def update(self, filename: str, data: bytes) -> None:
        self.pending[filename] = bytes(data)

    def remove(self, filename: str) -> None:
        self.pending[filename] = None

    def flush(self) -> None:
        for filename, data in self.pending.items():
            path = self._path(filename)
            try:
                if data is None:
                    logger.debug("Removing %s", path)
                    path.unlink(missing_ok=True)
                else:
                    logger.debug("Writing %s", path)
                    path.write_bytes(data)
            except OSError as exc:
                raise CarIOError(f"Failed to write {path}. {exc}") from exc
        self.pending.clear()

    def __repr__(self) -> str:
        return f"DataFolderInterface({self.data_folder_path})"


class AcdDataInterface:
    """A packed ``data.acd``; edits go straight to the archive, ``flush`` re-encodes it."""

    def __init__(self, acd_path: Path) -> None:
        self.archive = AcdArchive.load_from_acd_file(Path(acd_path))

    def get(self, filename: str) -> Optional[bytes]:
        return self.archive.get_file_data(filename)

    def contains(self, filename: str) -> bool:
        return self.archive.contains_file(filename)

    def update(self, filename: str, data: bytes) -> None:
        self.archive.update_file_data(filename, data)

    def remove(self, filename: str) -> None:
        self.archive.delete_file(filename)

    def flush(self) -> None:
        self.archive.write()

    def __repr__(self) -> str:
        return f"AcdDataInterface({self.archive.acd_path})"


DataInterface = Union[DataFolderInterface, AcdDataInterface]


def open_data_interface(car_path: Path) -> DataInterface:
    """Prefer an unpacked ``data/`` folder; fall back to ``data.acd``."""
    car_path = Path(car_path)
    data_dir = car_path / 'data'
    if data_dir.is_dir():
        return DataFolderInterface(data_dir)
    acd_path = car_path / 'data.acd'
    if acd_path.is_file():
        try:
            return AcdDataInterface(acd_path)
        except AcdError as exc:
            raise CarIOError(f"Failed to load {acd_path}. {exc}") from exc
    raise CarIOError(f"{car_path} has neither a data folder nor a data.acd")
