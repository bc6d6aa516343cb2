"""
Field alias resolution.

Aliases are declared per operation as ``{external_name: internal_attribute}``.
Inbound, filter/order fields and write payload keys are translated to
internal names; outbound, records are translated back and the raw internal
key of an aliased attribute is removed.
"""

from typing import Any, Dict, Optional


class FieldAliasResolver:
    """Bidirectional external <-> internal attribute name mapping."""

    def __init__(self, aliases: Optional[Dict[str, str]] = None):
        self.aliases: Dict[str, str] = dict(aliases or {})
        self._reverse: Dict[str, str] = {internal: external for external, internal in self.aliases.items()}

    def __bool__(self) -> bool:
        return bool(self.aliases)

    def to_internal(self, name: str) -> str:
        """Internal attribute name for an external field name."""
        return self.aliases.get(name, name)

    def to_external(self, name: str) -> str:
        """External field name for an internal attribute name."""
        return self._reverse.get(name, name)

    def map_to_internal(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not self.aliases or not isinstance(payload, dict):
            return payload
        return {self.to_internal(key): value for key, value in payload.items()}

    def map_to_external(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """
        Rename aliased attributes of an outbound record.

        The internal key never survives: ``{"person_name": "Ada"}`` with alias
        ``{"name": "person_name"}`` becomes ``{"name": "Ada"}``.
        """
        if not self.aliases or not isinstance(record, dict):
            return record
        mapped: Dict[str, Any] = {}
        for key, value in record.items():
            external = self.to_external(key)
            if external != key or key not in mapped:
                mapped[external] = value
        return mapped
