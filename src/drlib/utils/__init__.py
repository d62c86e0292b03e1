"""
Utility classes shared across the package.
"""
from dataclasses import dataclass, fields
from typing import Any


# Classes --------------------------------------------------------------------------------------------------------------
@dataclass(slots=True, frozen=True, kw_only=True)
class Config:
    """
    Config parent class that can conveniently set attributes from CLI args
    """
    @classmethod
    def from_obj(cls, obj: Any) -> 'Config':
        """
        Builds a config from the matching attributes of any object (e.g. an ``argparse.Namespace``).

        Attributes that are missing or ``None`` on ``obj`` keep their default values.
        """
        return cls(**{f.name: val for f in fields(cls) if (val := getattr(obj, f.name, None)) is not None})

    @classmethod
    def from_dict(cls, data: dict) -> 'Config':
        """Builds a config from a mapping, ignoring unknown keys."""
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in names and v is not None})
