"""Deterministic maintenance-interval suggestions.

Service names are picked from MASTER_SERVICES so inspections, menus and
suggestions share one vocabulary.
"""

import math
from datetime import date
from typing import Final, Literal

Units = Literal["mi", "km"]

KM_TO_MILES: Final[float] = 0.621371

MASTER_SERVICES: Final[dict[str, tuple[str, ...]]] = {
    "Oil & Fluids Service": (
        "Engine oil and filter change (gasoline)",
        "Engine oil and filter change (diesel)",
        "Engine air filter replacement",
        "Cabin air filter replacement",
        "Transmission service (automatic)",
        "Transmission service (manual)",
        "Front differential service",
        "Rear differential service",
        "Transfer case service",
        "Power steering fluid service",
        "Coolant flush and fill",
        "Brake fluid flush",
        "DEF tank fill and system check",
    ),
    "Fuel System": (
        "Gasoline fuel filter replacement",
        "Diesel primary fuel filter replacement",
        "Diesel secondary fuel filter replacement",
        "Water separator drain/check",
        "Induction/throttle body service",
        "Fuel injector cleaning (as needed)",
    ),
    "Chassis & Driveline": (
        "Grease chassis (automotive)",
        "Grease chassis (heavy-duty)",
        "Grease 5th wheel",
        "Inspect driveline and U-joints",
        "Check hanger bearings",
        "Inspect CV axles and boots",
    ),
    "Brake System Service": (
        "Brake inspection (automotive)",
        "Brake inspection (heavy-duty)",
        "Replace front brake pads",
        "Replace rear brake pads",
        "Replace front brake shoes (heavy-duty)",
        "Replace rear brake shoes (heavy-duty)",
        "Brake rotor replacement",
        "Brake drum replacement",
        "Parking brake adjustment",
        "Push rod travel check (air brakes)",
    ),
    "Tire, Wheel & Alignment": (
        "Tire rotation (4-wheel)",
        "Tire rotation (dually)",
        "Tire inspection and pressure check",
        "Torque wheel lug nuts",
        "Wheel balance (as needed)",
        "Four-wheel alignment check",
        "TPMS inspection/reset",
    ),
    "Diagnostic & Electrical": (
        "Global scan + clear codes (report)",
        "Check engine light diagnosis",
        "ABS light diagnosis",
        "Airbag/SRS light diagnosis",
        "Battery/charging system test",
        "Starting/charging system diagnosis",
        "Software/TSB check (as applicable)",
    ),
    "Cooling & Belts": (
        "Cooling system pressure test",
        "Inspect hoses and clamps",
        "Serpentine belt inspection/replacement",
        "Timing belt replacement (as scheduled)",
        "Water pump inspection (leaks/noise)",
    ),
    "General Inspection Services": (
        "Pre-purchase inspection",
        "CVIP inspection (commercial)",
        "Annual safety inspection",
        "Multi-point inspection (50-point)",
        "Road test and report",
    ),
    "HVAC & Interior": (
        "HVAC system inspection",
        "Defrost system check",
        "Blower motor operation check",
        "Wiper blade replacement",
        "Washer fluid top-up",
        "Cabin air filter replacement",
    ),
    "Emissions & DEF (Diesel)": (
        "DEF fluid top-up",
        "Check DEF warning lights",
        "Inspect SCR system (heavy-duty)",
        "EGR system inspection",
        "DPF cleaning or regeneration",
        "Glow plug system test (diesel)",
        "NOx sensor diagnosis (diesel)",
    ),
    "Customer-Reported Issues": (
        "Customer states: vehicle pulls to right",
        "Customer states: noise when braking",
        "Customer states: vibration at highway speed",
        "Customer states: fluid leak observed",
        "Customer states: warning light on dash",
    ),
}

# Oil is scheduled in the odometer's own unit system, so it is compared
# against the raw reading. Everything else is a mileage interval.
OIL_INTERVALS: Final[dict[str, dict[str, int]]] = {
    "mi": {"gas": 5000, "diesel": 7500},
    "km": {"gas": 5000, "diesel": 8000},
}

INTERVALS_MI: Final[dict[str, int]] = {
    "rotate": 6000,
    "brake_inspect": 6000,
    "coolant_flush": 60000,
    "brake_fluid": 30000,
    "trans_serv": 60000,
    "diff": 60000,
    "tcase": 60000,
    "air_filter": 15000,
    "cabin_filter": 15000,
    "spark_plugs": 100000,
    "diesel_primary_fuel": 15000,
    "diesel_secondary_fuel": 30000,
}
NEAR_MARK_WINDOW_MI: Final[int] = 1000
COOLANT_AGE_YEARS: Final[int] = 5
BRAKE_FLUID_AGE_YEARS: Final[int] = 3
SPARK_PLUG_SERVICE: Final[str] = "Spark plug replacement (as scheduled)"


def to_miles(value: float, units: Units) -> float:
    return value * KM_TO_MILES if units == "km" else value


class _Picker:
    """Ordered set of canonical service names."""

    def __init__(self) -> None:
        self.picks: dict[str, None] = {}

    def exact(self, needle: str) -> None:
        lowered = needle.lower()
        for items in MASTER_SERVICES.values():
            for item in items:
                if item.lower() == lowered:
                    self.picks[item] = None

    def starts_with(self, prefix: str) -> None:
        lowered = prefix.lower()
        for items in MASTER_SERVICES.values():
            for item in items:
                if item.lower().startswith(lowered):
                    self.picks[item] = None

    def add(self, name: str) -> None:
        self.picks[name] = None


def suggest_services_for_vehicle(
    mileage: float | None = None,
    year: int | None = None,
    is_diesel: bool = False,
    is_heavy_duty: bool = False,
    is_4x4: bool = False,
    units: Units = "km",
    *,
    current_year: int | None = None,
) -> list[str]:
    """Return canonical service names due for a vehicle."""
    if units not in OIL_INTERVALS:
        raise ValueError(f"Unsupported units: {units!r}")

    odometer = max(0.0, float(mileage)) if mileage else 0.0
    mileage_mi = max(0, math.floor(to_miles(odometer, units) + 0.5))
    age_years = (current_year or date.today().year) - year if year else None

    picker = _Picker()

    oil_interval = OIL_INTERVALS[units]["diesel" if is_diesel else "gas"]
    if odometer > 0 and odometer >= oil_interval:
        picker.exact(
            "Engine oil and filter change (diesel)"
            if is_diesel
            else "Engine oil and filter change (gasoline)"
        )

    if mileage_mi != 0 and mileage_mi % INTERVALS_MI["rotate"] < NEAR_MARK_WINDOW_MI:
        picker.starts_with("Tire rotation")
        picker.exact("Tire inspection and pressure check")
        picker.exact("Torque wheel lug nuts")
        picker.exact("Wheel balance (as needed)")

    if mileage_mi != 0 and mileage_mi % INTERVALS_MI["brake_inspect"] < NEAR_MARK_WINDOW_MI:
        picker.starts_with("Brake inspection")

    if mileage_mi >= INTERVALS_MI["air_filter"]:
        picker.exact("Engine air filter replacement")
    if mileage_mi >= INTERVALS_MI["cabin_filter"]:
        picker.exact("Cabin air filter replacement")

    if is_4x4 and mileage_mi >= INTERVALS_MI["diff"]:
        picker.exact("Front differential service")
        picker.exact("Rear differential service")
    if is_4x4 and mileage_mi >= INTERVALS_MI["tcase"]:
        picker.exact("Transfer case service")

    if mileage_mi >= INTERVALS_MI["trans_serv"]:
        picker.exact("Transmission service (automatic)")
        picker.exact("Transmission service (manual)")

    if mileage_mi >= INTERVALS_MI["coolant_flush"] or (
        age_years is not None and age_years >= COOLANT_AGE_YEARS
    ):
        picker.exact("Coolant flush and fill")
    if mileage_mi >= INTERVALS_MI["brake_fluid"] or (
        age_years is not None and age_years >= BRAKE_FLUID_AGE_YEARS
    ):
        picker.exact("Brake fluid flush")

    if is_diesel:
        picker.exact("Water separator drain/check")
        if mileage_mi >= INTERVALS_MI["diesel_primary_fuel"]:
            picker.exact("Diesel primary fuel filter replacement")
        if mileage_mi >= INTERVALS_MI["diesel_secondary_fuel"]:
            picker.exact("Diesel secondary fuel filter replacement")
        picker.exact("DEF tank fill and system check")

    if is_heavy_duty or is_4x4:
        picker.exact("Grease chassis (heavy-duty)")
    else:
        picker.exact("Grease chassis (automotive)")

    picker.exact("Global scan + clear codes (report)")
    picker.exact("Multi-point inspection (50-point)")
    picker.exact("Battery/charging system test")

    # Not in the master list; surfaced as an inspection note.
    if not is_diesel and mileage_mi >= INTERVALS_MI["spark_plugs"]:
        picker.add(SPARK_PLUG_SERVICE)

    return list(picker.picks)
