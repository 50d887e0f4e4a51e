"""
Species name reconciliation.

Aerial and camera labels are mapped onto one canonical vocabulary (the camera
study's names). Lookup is case-, whitespace- and underscore-insensitive.
Labels resolve to exactly one of:

- ``canonical``: a vocabulary name, either directly or via an alias;
- ``excluded``: a non-focal taxon or a non-animal trigger, dropped silently;
- ``unmapped``: anything else, dropped and reported so the tables can grow.
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

import pandas as pd

from .errors import UnmappedSpeciesWarning


SIDES: Tuple[str, ...] = ("aerial", "camera")

CANONICAL = "canonical"
EXCLUDED = "excluded"
UNMAPPED = "unmapped"

CANONICAL_SPECIES: FrozenSet[str] = frozenset(
    {
        "Aardvark",
        "Baboon",
        "Buffalo",
        "Bushbaby",
        "Bushbuck",
        "Bushpig",
        "Civet",
        "Duiker_common",
        "Duiker_red",
        "Eland",
        "Elephant",
        "Genet",
        "Hare",
        "Hartebeest",
        "Hippopotamus",
        "Honey_badger",
        "Hyena_spotted",
        "Impala",
        "Kudu",
        "Lion",
        "Mongoose_banded",
        "Mongoose_bushy_tailed",
        "Mongoose_large_grey",
        "Mongoose_marsh",
        "Mongoose_slender",
        "Mongoose_white_tailed",
        "Nyala",
        "Oribi",
        "Pangolin",
        "Porcupine",
        "Reedbuck",
        "Sable_antelope",
        "Samango",
        "Serval",
        "Vervet",
        "Warthog",
        "Waterbuck",
        "Wild_dog",
        "Wildcat",
        "Wildebeest",
        "Zebra",
    }
)

SPECIES_ALIASES: Dict[str, str] = {
    "Baboon troop": "Baboon",
    "Blue wildebeest": "Wildebeest",
    "Common reedbuck": "Reedbuck",
    "Duiker grey": "Duiker_common",
    "Duiker red": "Duiker_red",
    "Sable": "Sable_antelope",
    "Hippo": "Hippopotamus",
    "Hartebeest Lichtenstein's": "Hartebeest",
}

EXCLUDED_LABELS: FrozenSet[str] = frozenset(
    {
        "Bird",
        "Bird_other",
        "Ground_hornbill",
        "Guineafowl_crested",
        "Guineafowl_helmeted",
        "Crocodile",
        "Nile crocodile",
        "Monitor_lizard",
        "Reptile",
        "Insect",
        "Rodent",
        "Bat",
        "Human",
        "Vehicle",
        "Setup",
        "Blank",
        "Ghost",
        "Fire",
        "Other",
        "Unknown",
        "Unidentified",
        "Unknown_antelope",
        "Duiker_unknown",
        "Mongoose_unknown",
    }
)


def label_key(label: object) -> str:
    """Case/spacing-insensitive lookup key for a raw label."""
    return " ".join(str(label).replace("_", " ").split()).casefold()


_CANONICAL_BY_KEY: Dict[str, str] = {label_key(s): s for s in CANONICAL_SPECIES}
_ALIAS_BY_KEY: Dict[str, str] = {label_key(k): v for k, v in SPECIES_ALIASES.items()}
_EXCLUDED_KEYS: FrozenSet[str] = frozenset(label_key(s) for s in EXCLUDED_LABELS)


@dataclass(frozen=True)
class Resolution:
    label: str
    status: str
    species: Optional[str] = None


def reconcile(label: object, side: str) -> Resolution:
    """Resolve one raw label from ``side`` ("aerial" or "camera")."""
    if side not in SIDES:
        raise ValueError(f"Unknown survey side {side!r}; expected one of {SIDES}")
    raw = "" if label is None else str(label)
    key = label_key(raw)
    if key in _CANONICAL_BY_KEY:
        return Resolution(raw, CANONICAL, _CANONICAL_BY_KEY[key])
    if key in _ALIAS_BY_KEY:
        return Resolution(raw, CANONICAL, _ALIAS_BY_KEY[key])
    if key in _EXCLUDED_KEYS:
        return Resolution(raw, EXCLUDED)
    return Resolution(raw, UNMAPPED)


def canonical_name(label: object, side: str = "aerial") -> Optional[str]:
    return reconcile(label, side).species


def reconcile_labels(labels: pd.Series, side: str, warn: bool = True) -> Tuple[pd.Series, List[str]]:
    """Map a label column onto canonical species.

    Returns the canonical column (missing where the row is dropped) and the
    sorted unmapped labels. Missing input labels count as unmapped.
    """
    cache: Dict[object, Resolution] = {}
    unmapped: set[str] = set()
    out: List[Optional[str]] = []
    for value in labels.tolist():
        if pd.isna(value):
            unmapped.add("<missing>")
            out.append(None)
            continue
        res = cache.get(value)
        if res is None:
            res = reconcile(value, side)
            cache[value] = res
        if res.status == UNMAPPED:
            unmapped.add(res.label)
        out.append(res.species)

    unresolved = sorted(unmapped)
    if unresolved and warn:
        warnings.warn(UnmappedSpeciesWarning(side, unresolved), stacklevel=2)
    return pd.Series(out, index=labels.index, dtype="object", name="Species"), unresolved


def resolve_vocabulary(labels: Iterable[object], side: str) -> Dict[str, List[str]]:
    """Group distinct raw labels by canonical species (for review of merges)."""
    groups: Dict[str, List[str]] = {}
    for label in sorted({str(x) for x in labels}):
        res = reconcile(label, side)
        if res.species is not None:
            groups.setdefault(res.species, []).append(label)
    return groups
