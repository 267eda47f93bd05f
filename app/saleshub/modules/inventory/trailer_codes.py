"""
Manufacturer model-code parsing.

Diamond Cargo encodes trailer options in the model string, e.g.
"7X16TA2 B.080 R VN 7'" = 7x16 tandem (3500 lb axles), black polycore skin,
ramp door, v-nose, 7' interior.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field


@dataclass(frozen=True)
class ColorInfo:
    code: str
    name: str
    is_premium: bool
    is_two_tone: bool


@dataclass(frozen=True)
class TrailerSpecs:
    width: int
    length: int
    axle_type: str  # Single, Tandem
    axle_weight: int | None
    color: ColorInfo
    skin_thickness: str  # .080, .030
    skin_material: str  # Polycore, Aluminum
    features: list[str] = field(default_factory=list)
    interior_height: int | None = None


COLOR_MAP: dict[str, tuple[str, bool]] = {
    "W": ("White", False),
    "B": ("Black", True),
    "R": ("Red", False),
    "SF": ("Silver Frost", False),
    "CG": ("Charcoal Gray", True),
    "EB": ("Emerald Black", True),
    "ELG": ("Electric Lime Green", True),
    "Y": ("Yellow", False),
    "AB": ("Abyss Blue", True),
    "BW": ("Black/White", True),
    "IB": ("Indigo Blue", True),
    "ORG/B": ("Orange/Black", True),
    "EG": ("Emerald Green", True),
}

FEATURE_MAP: dict[str, str] = {
    "R": "Ramp Door",
    "DD": "Double Doors",
    "VN": "V-Nose",
    "SVN": "Slant V-Nose",
    "SRW": "Screwless Exterior",
    "FF": "Flat Front",
    "TTT": "Triple Tube Tongue",
}

# Longer codes first so "R-RW" is not read as "R".
REAR_CODES = ("R-RW", "8'P", "HDR", "SRW", "DD", "R")

_DIM_RE = re.compile(r"(\d+)X(\d+)", re.IGNORECASE)
_COLOR_RE = re.compile(r"\s([A-Z/]+)\.0[38]0")
_HEIGHT_RE = re.compile(r"(\d+)'")
_SIZE_RE = re.compile(r"(\d+(?:\.\d+)?)\s*[X×]\s*(\d+(?:\.\d+)?)", re.IGNORECASE)
_HEIGHT_FT_IN_RE = re.compile(r"(\d+)'(\d+)?\"?")


def parse_color(model_code: str) -> ColorInfo:
    m = _COLOR_RE.search(model_code)
    if not m:
        return ColorInfo("W", "White", False, False)
    code = m.group(1)
    name, premium = COLOR_MAP.get(code, ("Unknown", False))
    return ColorInfo(code, name, premium, "/" in code)


def parse_axle(model_code: str) -> tuple[str, int | None]:
    if "TA" in model_code:
        return "Tandem", (3500 if "TA2" in model_code else None)
    return "Single", None


def parse_features(model_code: str) -> list[str]:
    return [FEATURE_MAP[t] for t in model_code.split() if t in FEATURE_MAP]


def parse_trailer_model(model_code: str) -> TrailerSpecs:
    dims = _DIM_RE.search(model_code)
    width, length = (int(dims.group(1)), int(dims.group(2))) if dims else (0, 0)
    axle_type, axle_weight = parse_axle(model_code)
    polycore = ".080" in model_code
    height = _HEIGHT_RE.search(model_code)
    return TrailerSpecs(
        width=width,
        length=length,
        axle_type=axle_type,
        axle_weight=axle_weight,
        color=parse_color(model_code),
        skin_thickness=".080" if polycore else ".030",
        skin_material="Polycore" if polycore else "Aluminum",
        features=parse_features(model_code),
        interior_height=int(height.group(1)) if height else None,
    )


def format_trailer_specs(specs: TrailerSpecs) -> str:
    parts = [f"{specs.width}×{specs.length}", "TA" if specs.axle_type == "Tandem" else "SA", specs.color.name]
    if specs.skin_material == "Polycore":
        parts.append("Polycore")
    if specs.features:
        parts.append(" • ".join(specs.features))
    if specs.interior_height:
        parts.append(f"{specs.interior_height}' Interior")
    return " • ".join(parts)


def parse_size(model_or_desc: str | None) -> tuple[float, float] | None:
    """Width/length from strings like 5X10SA, "6 x 12 TA", 8.5X20TA."""
    if not model_or_desc:
        return None
    m = _SIZE_RE.search(model_or_desc)
    if not m:
        return None
    return float(m.group(1)), float(m.group(2))


def parse_rear(desc: str | None) -> str | None:
    if not desc:
        return None
    upper = desc.upper()
    return next((code for code in REAR_CODES if code in upper), None)


def parse_height_feet(raw: str | None) -> float | None:
    """Height strings from spreadsheets, e.g. 7' -> 7.0 and 6'6 -> 6.5."""
    text = str(raw or "").strip()
    if not text:
        return None
    m = _HEIGHT_FT_IN_RE.search(text)
    if not m:
        return None
    inches = int(m.group(2)) if m.group(2) else 0
    return int(m.group(1)) + inches / 12


def format_height(height_feet: float) -> str:
    feet = math.floor(height_feet)
    inches = round((height_feet - feet) * 12)
    return f"{feet}'{inches}\""


def diamond_height(width_feet: float) -> float:
    # Diamond standard heights: 5'6" up to 6' wide, 6'3" above.
    return 5.5 if width_feet <= 6 else 6.25
