"""
Error hierarchy shared by the engine-crane core.

Car-level problems derive from CarError; the binary codecs raise
DecodeError / EncodeError subclasses which always carry the path being
processed and a reason string.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Union


class CarError(Exception):
    """Base class for errors raised while working on an Assetto Corsa car."""


class NoSuchCar(CarError):
    """Raised when a car folder doesn't exist in the installation."""


class CarAlreadyExists(CarError):
    """Raised when a clone target already exists."""


class NotInstalled(CarError):
    """Raised when Assetto Corsa (or one of its shared folders) can't be found."""


class InvalidCar(CarError):
    """Raised when a car is missing a mandatory file, section or property."""

    def __init__(self, message: str, *, section: Optional[str] = None,
                 key: Optional[str] = None, filename: Optional[str] = None) -> None:
        self.section = section
        self.key = key
        self.filename = filename
        if section is not None:
            locator = section if key is None else f"{section}.{key}"
            if filename:
                locator = f"{locator} in {filename}"
            message = f"{message} ({locator})"
        super().__init__(message)


class MissingMandatoryProperty(InvalidCar):
    """Raised when a mandatory INI property is absent or can't be parsed."""

    def __init__(self, section: str, key: str, filename: Optional[str] = None) -> None:
        super().__init__("Missing mandatory property", section=section, key=key, filename=filename)


class InvalidUpdate(CarError):
    """Raised when an update would leave car data inconsistent."""


class CarIOError(CarError):
    """Raised when reading or writing car files fails."""


class UiJsonError(CarError):
    """Raised when ui_car.json can't be decoded or updated."""


class ArgumentError(CarError):
    """Raised for invalid caller input."""


class CodecError(Exception):
    """Base class for binary format errors."""

    def __init__(self, path: Union[str, Path, None], reason: str) -> None:
        self.path = str(path) if path is not None else None
        self.reason = reason
        where = f" {self.path}" if self.path else ""
        super().__init__(f"{self.verb}{where}. {reason}")

    verb = "Failed to process"


class DecodeError(CodecError):
    """Raised when a binary file can't be decoded."""

    verb = "Failed to decode"


class EncodeError(CodecError):
    """Raised when data can't be encoded."""

    verb = "Failed to encode"


class AcdError(Exception):
    """Raised for .acd archive problems that aren't decode/encode failures."""


class AcdKeyError(AcdError):
    """Raised when an extraction key can't be derived from a folder name."""

    def __init__(self, name: str, reason: str) -> None:
        self.name = name
        self.reason = reason
        super().__init__(f"Failed to generate extraction key from '{name}'. {reason}")


class AcdDecodeError(DecodeError, AcdError):
    """Raised when an .acd archive can't be decoded."""


class AcdEncodeError(EncodeError, AcdError):
    """Raised when an .acd archive can't be written."""


class CarFileDecodeError(DecodeError):
    """Raised when an Automation .car blob can't be decoded."""


class CarFileEncodeError(EncodeError):
    """Raised when an Automation .car tree can't be encoded."""


class CarFileAccessError(Exception):
    """Raised when a .car attribute is missing or of the wrong kind."""


class SandboxError(Exception):
    """Raised when the Automation sandbox database can't be read."""


class ValidationError(Exception):
    """Raised when a .car blob disagrees with its sandbox record."""

    HINT = "The BeamNG mod may be out-of-date; try recreating a mod with the latest engine version"

    def __init__(self, discrepancies: List[object]) -> None:
        self.discrepancies = list(discrepancies)
        details = "; ".join(str(d) for d in self.discrepancies)
        super().__init__(f"{details}. {self.HINT}")


class BeamNGModError(Exception):
    """Raised when a BeamNG mod zip is missing required content."""


class CrateEngineError(Exception):
    """Raised when a crate engine can't be created, read or written."""


class FabricationError(Exception):
    """Raised when an engine swap can't be completed."""

    def __init__(self, stage: str, reason: str) -> None:
        self.stage = stage
        self.reason = reason
        super().__init__(f"{stage}. {reason}")
