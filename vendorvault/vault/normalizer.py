"""
Field Normalizer — maps producer field-name variants onto canonical names.

Resolution order for an input name against one vendor's schema:

  1. exact match on a canonical field name
  2. exact match on a declared alias
  3. loose match: lower-cased with separators (``_ - . space``) removed,
     compared against canonical names and aliases

Anything unmatched after tier 3 is unknown and rejected, never dropped.
The tables are built from schema data only; adding a vendor never adds
control flow here.

Usage:
    from vendorvault.vault.normalizer import FieldNormalizer
    normalizer = FieldNormalizer(get_schema_registry())
    normalizer.resolve_field_name("bill-hicks", "ftpHost")   # "ftp_server"
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from vendorvault.errors import UnknownFieldError, ValidationError
from vendorvault.vault.models import ScopeKind, VendorDefinition

logger = logging.getLogger(__name__)

_SEPARATORS = re.compile(r"[\s_.\-]+")


def loose_key(name: str) -> str:
    """Case- and separator-insensitive form of a field name."""
    return _SEPARATORS.sub("", name).lower()


@dataclass(frozen=True)
class ResolutionTable:
    """Precomputed three-tier lookup for one vendor definition."""

    canonical: frozenset[str]
    aliases: dict[str, str]
    loose: dict[str, str]

    def resolve(self, input_name: str) -> str | None:
        if input_name in self.canonical:
            return input_name
        if input_name in self.aliases:
            return self.aliases[input_name]
        return self.loose.get(loose_key(input_name))


def build_resolution_table(definition: VendorDefinition) -> ResolutionTable:
    """Build the lookup table. Raises ValueError if two fields collide loosely."""
    canonical = frozenset(f.name for f in definition.fields)
    aliases: dict[str, str] = {}
    loose: dict[str, str] = {}

    for spec in definition.fields:
        for alias in spec.aliases:
            aliases[alias] = spec.name
        for name in (spec.name, *spec.aliases):
            key = loose_key(name)
            owner = loose.get(key)
            if owner is not None and owner != spec.name:
                raise ValueError(
                    f"{definition.vendor_id}: {name!r} is ambiguous between "
                    f"fields {owner!r} and {spec.name!r}"
                )
            loose[key] = spec.name

    return ResolutionTable(canonical=canonical, aliases=aliases, loose=loose)


class FieldNormalizer:
    """Resolves and normalizes credential field names per vendor schema."""

    def __init__(self, schemas):
        self._schemas = schemas
        self._tables: dict[str, tuple[VendorDefinition, ResolutionTable]] = {}

    def table_for(self, definition: VendorDefinition) -> ResolutionTable:
        cached = self._tables.get(definition.vendor_id)
        if cached is not None and cached[0] is definition:
            return cached[1]
        table = build_resolution_table(definition)
        self._tables[definition.vendor_id] = (definition, table)
        return table

    def resolve_field_name(self, vendor_id: str, input_name: str) -> str | None:
        """Canonical name for ``input_name``, or None if the vendor has no such field."""
        definition = self._schemas.require(vendor_id)
        return self.table_for(definition).resolve(input_name)

    def normalize(
        self,
        definition: VendorDefinition,
        fields: dict[str, str],
        scope_kind: ScopeKind | None = None,
    ) -> dict[str, str]:
        """Rename every key of ``fields`` to its canonical name.

        Raises UnknownFieldError listing all unmatched names, and
        ValidationError if two variants of one field carry different values.
        When ``scope_kind`` is given, fields not accepted in that scope count
        as unknown.
        """
        table = self.table_for(definition)
        result: dict[str, str] = {}
        sources: dict[str, str] = {}
        unknown: list[str] = []
        conflicts: list[str] = []

        for input_name, value in fields.items():
            canonical = table.resolve(input_name)
            if canonical is None:
                unknown.append(input_name)
                continue
            if scope_kind is not None:
                spec = definition.get_field(canonical)
                if spec is not None and not spec.accepted_in(scope_kind):
                    unknown.append(input_name)
                    continue
            if canonical in result and result[canonical] != value:
                conflicts.append(
                    f"{input_name!r} and {sources[canonical]!r} both set {canonical} "
                    "with different values"
                )
                continue
            if input_name != canonical:
                logger.debug(
                    "Normalized field %s -> %s for %s", input_name, canonical, definition.vendor_id
                )
            result[canonical] = value
            sources[canonical] = input_name

        if unknown:
            raise UnknownFieldError(
                f"Unknown credential field(s) for {definition.vendor_id}: {', '.join(sorted(unknown))}",
                problems=[f"Unknown field: {name}" for name in sorted(unknown)],
            )
        if conflicts:
            raise ValidationError("Conflicting credential field values", problems=conflicts)
        return result

    def canonicalize_stored(
        self, definition: VendorDefinition, stored: dict[str, str]
    ) -> dict[str, str]:
        """Lenient normalization for rows written under older field names.

        Unknown legacy keys are logged and left out rather than raised, since
        the caller did not supply them. Canonical keys win over aliases.
        """
        table = self.table_for(definition)
        result: dict[str, str] = {}
        for name, value in stored.items():
            canonical = table.resolve(name)
            if canonical is None:
                logger.warning(
                    "Ignoring stored field %r not in %s schema", name, definition.vendor_id
                )
                continue
            if canonical in result and name != canonical:
                continue
            result[canonical] = value
        return result
