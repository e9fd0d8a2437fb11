"""
Colour-histogram heuristic for image-grid challenges.

This is a best-effort guess, not vision: each keyword maps to a colour
profile and a tile is selected when an unusually large share of its pixels
falls inside that profile. Being wrong is acceptable; the challenge handler
re-checks whether the grid cleared.
"""

import io
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
from PIL import Image, UnidentifiedImageError


@dataclass(frozen=True)
class ColourProfile:
    """Hue ranges in degrees plus saturation/value bounds in [0, 1]."""

    hue_ranges: Tuple[Tuple[float, float], ...] = ()
    min_saturation: float = 0.35
    max_saturation: float = 1.0
    min_value: float = 0.25
    max_value: float = 1.0


RED = ((0, 15), (345, 360))
YELLOW = ((40, 65),)
GREEN = ((75, 160),)
BLUE = ((190, 250),)

PROFILES = {
    "fire hydrant": ColourProfile(hue_ranges=RED + YELLOW),
    "hydrant": ColourProfile(hue_ranges=RED + YELLOW),
    "traffic light": ColourProfile(hue_ranges=RED + YELLOW + GREEN, min_value=0.5),
    "bus": ColourProfile(hue_ranges=RED + YELLOW),
    "taxi": ColourProfile(hue_ranges=YELLOW),
    "car": ColourProfile(hue_ranges=RED + BLUE, min_saturation=0.3),
    "tree": ColourProfile(hue_ranges=GREEN, min_saturation=0.25),
    "plant": ColourProfile(hue_ranges=GREEN, min_saturation=0.25),
    "grass": ColourProfile(hue_ranges=GREEN, min_saturation=0.25),
    "mountain": ColourProfile(hue_ranges=GREEN + BLUE, min_saturation=0.15),
    "boat": ColourProfile(hue_ranges=BLUE, min_saturation=0.25),
    "water": ColourProfile(hue_ranges=BLUE, min_saturation=0.25),
    "crosswalk": ColourProfile(max_saturation=0.15, min_value=0.75),
    "stair": ColourProfile(max_saturation=0.2, min_value=0.5),
    "bridge": ColourProfile(max_saturation=0.25, min_value=0.35, max_value=0.85),
    "chimney": ColourProfile(hue_ranges=RED, min_saturation=0.3, max_value=0.75),
}

SYNONYMS = {
    "hidrante": "hydrant",
    "hidrantes": "hydrant",
    "semáforo": "traffic light",
    "semáforos": "traffic light",
    "semaforo": "traffic light",
    "autobús": "bus",
    "autobuses": "bus",
    "coche": "car",
    "coches": "car",
    "carro": "car",
    "carros": "car",
    "árbol": "tree",
    "árboles": "tree",
    "barco": "boat",
    "barcos": "boat",
    "paso de peatones": "crosswalk",
    "pasos de peatones": "crosswalk",
    "escaleras": "stair",
    "puente": "bridge",
    "puentes": "bridge",
    "chimenea": "chimney",
    "chimeneas": "chimney",
    "montaña": "mountain",
    "montañas": "mountain",
}


def profile_for(keyword: str) -> Optional[ColourProfile]:
    """Look up the colour profile for a challenge keyword (English or Spanish)."""
    key = (keyword or "").strip().lower()
    if not key:
        return None
    key = SYNONYMS.get(key, key)
    if key in PROFILES:
        return PROFILES[key]
    singular = key[:-2] if key.endswith("es") else key.rstrip("s")
    if singular in PROFILES:
        return PROFILES[singular]
    for name, profile in PROFILES.items():
        if name in key:
            return profile
    return None


def _to_hsv(image: Image.Image) -> np.ndarray:
    hsv = np.asarray(image.convert("RGB").convert("HSV"), dtype=np.float32) / 255.0
    hsv[..., 0] *= 360.0
    return hsv


def profile_fraction(image: Image.Image, profile: ColourProfile) -> float:
    """Fraction of pixels of ``image`` that fall inside ``profile``."""
    hsv = _to_hsv(image)
    hue, sat, val = hsv[..., 0], hsv[..., 1], hsv[..., 2]

    mask = (sat >= profile.min_saturation) & (sat <= profile.max_saturation)
    mask &= (val >= profile.min_value) & (val <= profile.max_value)
    if profile.hue_ranges:
        in_hue = np.zeros_like(mask)
        for low, high in profile.hue_ranges:
            in_hue |= (hue >= low) & (hue <= high)
        mask &= in_hue

    total = mask.size
    return float(mask.sum()) / total if total else 0.0


def classify_tiles(images: Sequence[bytes], keyword: str, min_fraction: float = 0.08) -> List[int]:
    """
    Pick tile indices that probably show ``keyword``.

    A tile is selected when its profile score is at least ``min_fraction``
    and at least half a standard deviation above the mean score of the grid.
    Unknown keywords or undecodable images yield no selection.
    """
    profile = profile_for(keyword)
    if profile is None or not images:
        return []

    scores = []
    for data in images:
        try:
            with Image.open(io.BytesIO(data)) as image:
                scores.append(profile_fraction(image, profile))
        except (UnidentifiedImageError, OSError, ValueError):
            return []

    values = np.asarray(scores, dtype=np.float64)
    threshold = max(min_fraction, float(values.mean() + 0.5 * values.std()))
    return [i for i, score in enumerate(scores) if score >= threshold]
