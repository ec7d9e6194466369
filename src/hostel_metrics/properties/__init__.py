"""Property catalog."""

from .catalog import DEFAULT_PROPERTIES, Property, PropertyCatalog

__all__ = ["DEFAULT_PROPERTIES", "Property", "PropertyCatalog"]
