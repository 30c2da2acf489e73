"""
Taxonomy Module
===============

Immutable index of the allowed classification values (categories,
subcategories, tags, gender, season, fit). Loaded once from YAML and
injected into the harvester, the validator and the prompt builder.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import cached_property, lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

import yaml

logger = logging.getLogger(__name__)

DEFAULT_TAXONOMY_PATH = Path(__file__).parent / "taxonomy.yaml"


@dataclass(frozen=True)
class TaxonomyTerm:
    key: str
    label: str
    description: str | None = None


@dataclass(frozen=True)
class TaxonomyCategory:
    key: str
    label: str
    description: str | None
    subcategories: tuple[TaxonomyTerm, ...]


def _term(data: Any) -> TaxonomyTerm:
    if isinstance(data, str):
        return TaxonomyTerm(key=data, label=data)
    return TaxonomyTerm(
        key=str(data["key"]),
        label=str(data.get("label") or data["key"]),
        description=data.get("description"),
    )


@dataclass(frozen=True)
class Taxonomy:
    """
    Allowed classification values.

    Lookups are precomputed once (cached_property on a frozen instance),
    so the index can be shared freely between concurrent items.
    """

    categories: tuple[TaxonomyCategory, ...]
    materials: tuple[str, ...]
    patterns: tuple[str, ...]
    occasions: tuple[str, ...]
    style_tags: tuple[str, ...]
    genders: tuple[str, ...]
    seasons: tuple[str, ...]
    fits: tuple[str, ...]
    version: int = 1

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Taxonomy:
        categories = tuple(
            TaxonomyCategory(
                key=str(entry["key"]),
                label=str(entry.get("label") or entry["key"]),
                description=entry.get("description"),
                subcategories=tuple(_term(sub) for sub in entry.get("subcategories") or []),
            )
            for entry in data.get("categories") or []
        )
        return cls(
            categories=categories,
            materials=tuple(data.get("materials") or ()),
            patterns=tuple(data.get("patterns") or ()),
            occasions=tuple(data.get("occasions") or ()),
            style_tags=tuple(data.get("style_tags") or ()),
            genders=tuple(data.get("genders") or ()),
            seasons=tuple(data.get("seasons") or ()),
            fits=tuple(data.get("fits") or ()),
            version=int(data.get("version") or 1),
        )

    @cached_property
    def category_values(self) -> tuple[str, ...]:
        return tuple(category.key for category in self.categories)

    @cached_property
    def subcategory_by_category(self) -> Mapping[str, tuple[str, ...]]:
        return MappingProxyType(
            {
                category.key: tuple(sub.key for sub in category.subcategories)
                for category in self.categories
            }
        )

    @cached_property
    def subcategory_values(self) -> tuple[str, ...]:
        values: list[str] = []
        for category in self.categories:
            values.extend(sub.key for sub in category.subcategories if sub.key not in values)
        return tuple(values)

    def subcategories_for(self, category: str | None) -> tuple[str, ...]:
        if not category:
            return ()
        return self.subcategory_by_category.get(category, ())


def load_taxonomy(path: Path | str) -> Taxonomy:
    """
    Load a taxonomy from a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist
        yaml.YAMLError: If the file is not valid YAML
    """
    path = Path(path)
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    taxonomy = Taxonomy.from_dict(data)
    logger.info(f"Loaded taxonomy v{taxonomy.version} with {len(taxonomy.categories)} categories")
    return taxonomy


@lru_cache(maxsize=1)
def get_default_taxonomy() -> Taxonomy:
    """Taxonomy from TAXONOMY_CONFIG_PATH, or the packaged taxonomy.yaml."""
    path = os.environ.get("TAXONOMY_CONFIG_PATH") or DEFAULT_TAXONOMY_PATH
    return load_taxonomy(path)
