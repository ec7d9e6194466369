"""Property catalog helpers."""
from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Mapping, Optional


@dataclass(frozen=True)
class Property:
    """A hostel known to the upstream reservation system."""

    key: str
    name: str
    property_id: str

    def missing_fields(self) -> List[str]:
        missing: List[str] = []
        if not self.property_id:
            missing.append("property_id")
        if not self.name:
            missing.append("name")
        return missing

    def is_ready(self) -> bool:
        return not self.missing_fields()


DEFAULT_PROPERTIES: tuple[Property, ...] = (
    Property(key="flamingo", name="Flamingo", property_id="6733"),
    Property(key="puerto", name="Puerto", property_id="316328"),
    Property(key="arena", name="Arena", property_id="315588"),
    Property(key="duque", name="Duque", property_id="316438"),
    Property(key="las-palmas", name="Las Palmas", property_id="316428"),
    Property(key="aguere", name="Aguere", property_id="316437"),
    Property(key="medano", name="Medano", property_id="316440"),
    Property(key="los-amigos", name="Los Amigos", property_id="316443"),
    Property(key="cisne", name="Cisne", property_id="316442"),
    Property(key="ashavana", name="Ashavana", property_id="316441"),
    Property(key="las-eras", name="Las Eras", property_id="316439"),
)


class PropertyCatalog:
    """Ordered property metadata; iteration order is the display order."""

    def __init__(self, properties: Mapping[str, Property], *, source: Optional[Path] = None) -> None:
        self._properties = dict(properties)
        self._source = source

    @property
    def source(self) -> Optional[Path]:
        return self._source

    def __len__(self) -> int:
        return len(self._properties)

    def get(self, key: str) -> Property:
        try:
            return self._properties[key]
        except KeyError:
            lowered = key.lower()
            for candidate in self._properties.values():
                if lowered in (candidate.key.lower(), candidate.name.lower(), candidate.property_id):
                    return candidate
            known = ", ".join(self._properties)
            raise KeyError(f"Property '{key}' not found in catalog. Known keys: {known}") from None

    def by_property_id(self, property_id: str) -> Optional[Property]:
        return next((item for item in self._properties.values() if item.property_id == property_id), None)

    def values(self) -> Iterable[Property]:
        return self._properties.values()

    def order_of(self, property_id: str) -> int:
        """Display position of ``property_id``; unknown ids sort last."""
        for position, item in enumerate(self._properties.values()):
            if item.property_id == property_id:
                return position
        return len(self._properties)

    @classmethod
    def default(cls) -> "PropertyCatalog":
        return cls({item.key: item for item in DEFAULT_PROPERTIES})

    @classmethod
    def load(cls, path: Path) -> "PropertyCatalog":
        if not path.exists():
            raise FileNotFoundError(f"Property catalog not found at {path}")
        data = json.loads(path.read_text())
        properties: dict[str, Property] = {}
        for entry in data.get("properties", []):
            item = Property(
                key=entry["key"],
                name=entry.get("name", entry["key"]),
                property_id=str(entry.get("property_id") or ""),
            )
            properties[item.key] = item
        return cls(properties, source=path)
