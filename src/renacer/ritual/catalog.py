"""Catalog of ritual definitions.

Definitions are plain data: ids, anchors and thresholds. Built-in rituals
ship as YAML next to this module; extra ones can be loaded from any YAML
file holding either a single definition or a ``rituals:`` list.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional

import yaml
from pydantic import ValidationError

from renacer.errors import CatalogError, DefinitionNotFoundError
from renacer.ritual.models import RitualDefinition

logger = logging.getLogger(__name__)

BUILTIN_DIR = Path(__file__).parent / "catalog_data"


def _apply_retry_default(item: object, default_max_retries: Optional[int]) -> object:
    if default_max_retries is None or not isinstance(item, dict):
        return item
    phases = item.get("phases")
    if not isinstance(phases, list):
        return item
    patched = [
        {"max_retries": default_max_retries, **phase} if isinstance(phase, dict) else phase
        for phase in phases
    ]
    return {**item, "phases": patched}


def _parse(data: object, source: str, default_max_retries: Optional[int] = None) -> List[RitualDefinition]:
    if isinstance(data, dict) and "rituals" in data:
        items = data["rituals"]
    elif isinstance(data, dict):
        items = [data]
    elif isinstance(data, list):
        items = data
    else:
        raise CatalogError(f"{source}: expected a mapping or a list of rituals")
    if not isinstance(items, list):
        raise CatalogError(f"{source}: 'rituals' must be a list")

    definitions = []
    for item in items:
        try:
            definitions.append(RitualDefinition.model_validate(_apply_retry_default(item, default_max_retries)))
        except ValidationError as exc:
            error_details = [
                f"{'.'.join(str(loc) for loc in err['loc'])}: {err['msg']}" for err in exc.errors()
            ]
            raise CatalogError(
                f"{source}: invalid ritual definition",
                details={"errors": error_details},
            ) from exc
    return definitions


def load_definitions(path: Path, *, default_max_retries: Optional[int] = None) -> List[RitualDefinition]:
    """Read ritual definitions from a YAML file.

    Phases that do not declare ``max_retries`` get ``default_max_retries``
    when it is given.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as exc:
        raise CatalogError(f"Cannot read ritual catalog {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise CatalogError(f"Ritual catalog {path} is not valid YAML: {exc}") from exc
    return _parse(data, str(path), default_max_retries)


class RitualCatalog:
    """Ritual definitions keyed by id."""

    def __init__(
        self,
        definitions: Iterable[RitualDefinition] = (),
        *,
        default_max_retries: Optional[int] = None,
    ) -> None:
        self._definitions: Dict[str, RitualDefinition] = {}
        self._default_max_retries = default_max_retries
        for definition in definitions:
            self.add(definition)

    @classmethod
    def builtin(cls, *, default_max_retries: Optional[int] = None) -> "RitualCatalog":
        catalog = cls(default_max_retries=default_max_retries)
        for path in sorted(BUILTIN_DIR.glob("*.yaml")):
            for definition in load_definitions(path, default_max_retries=default_max_retries):
                catalog.add(definition)
        return catalog

    @classmethod
    def from_settings(
        cls,
        catalog_path: Optional[Path] = None,
        *,
        default_max_retries: Optional[int] = None,
    ) -> "RitualCatalog":
        """Built-in rituals plus the user's catalog file, if configured."""
        catalog = cls.builtin(default_max_retries=default_max_retries)
        if catalog_path is not None:
            catalog.load_yaml(Path(catalog_path).expanduser(), replace=True)
        return catalog

    def add(self, definition: RitualDefinition, *, replace: bool = False) -> None:
        if definition.id in self._definitions and not replace:
            raise CatalogError(f"Duplicate ritual definition: {definition.id}")
        self._definitions[definition.id] = definition

    def load_yaml(self, path: Path, *, replace: bool = False) -> List[RitualDefinition]:
        definitions = load_definitions(path, default_max_retries=self._default_max_retries)
        for definition in definitions:
            self.add(definition, replace=replace)
        logger.info("Loaded ritual catalog", extra={"path": str(path), "definitions": len(definitions)})
        return definitions

    def get(self, definition_id: str) -> RitualDefinition:
        try:
            return self._definitions[definition_id]
        except KeyError:
            raise DefinitionNotFoundError(
                f"Unknown ritual: {definition_id}",
                details={"definition_id": definition_id, "available": self.ids()},
            ) from None

    def ids(self) -> List[str]:
        return sorted(self._definitions)

    def __contains__(self, definition_id: object) -> bool:
        return definition_id in self._definitions

    def __iter__(self) -> Iterator[RitualDefinition]:
        return iter(self._definitions[key] for key in self.ids())

    def __len__(self) -> int:
        return len(self._definitions)
