"""Kentucky ZIP -> city and sales tax rate. KY base is 6%; Warren County adds 3.5%."""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass

KY_BASE_RATE = 6.0
WARREN_COUNTY_RATE = 9.5


@dataclass(frozen=True)
class LocationData:
    city: str
    state: str
    tax_rate: float
    county: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


_WARREN = ("42101", "42102", "42103", "42104")
_LOUISVILLE = (
    "40201 40202 40203 40204 40205 40206 40207 40208 40209 40210 40211 40212 40213 40214 40215 "
    "40216 40217 40218 40219 40220 40221 40222 40223 40224 40225 40228 40229 40231 40232 40233 "
    "40241 40242 40243 40245 40250 40251 40252 40253 40255 40256 40257 40258 40259 40261 40266 "
    "40268 40269 40270 40272 40280 40281 40282 40283 40285 40287 40289 40290 40291 40292 40293 "
    "40294 40295 40296 40297 40298 40299"
).split()
_LEXINGTON = (
    "40502 40503 40504 40505 40506 40507 40508 40509 40510 40511 40512 40513 40514 40515 40516 "
    "40517 40522 40523 40524 40526 40533 40536 40544 40546 40550 40555 40574 40575 40576 40577 "
    "40578 40579 40580 40581 40582 40583 40588 40591 40598"
).split()

ZIP_TAX_MAP: dict[str, LocationData] = {
    **{z: LocationData("Bowling Green", "KY", WARREN_COUNTY_RATE, "Warren") for z in _WARREN},
    **{z: LocationData("Louisville", "KY", KY_BASE_RATE, "Jefferson") for z in _LOUISVILLE},
    **{z: LocationData("Lexington", "KY", KY_BASE_RATE, "Fayette") for z in _LEXINGTON},
}

UNKNOWN_LOCATION = LocationData("Unknown", "KY", KY_BASE_RATE)


def clean_zip(zip_code: str | int | None) -> str:
    # JSON clients send ZIPs as numbers too.
    return re.sub(r"\D", "", "" if zip_code is None else str(zip_code))[:5]


def location_by_zip(zip_code: str | int | None) -> LocationData:
    return ZIP_TAX_MAP.get(clean_zip(zip_code), UNKNOWN_LOCATION)


def is_known_ky_zip(zip_code: str | None) -> bool:
    return clean_zip(zip_code) in ZIP_TAX_MAP
