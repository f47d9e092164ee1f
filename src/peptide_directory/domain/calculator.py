from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

PEPTIDE_MG_RANGE = (0.1, 50.0)
WATER_ML_RANGE = (0.5, 10.0)

# Concentration (mcg per 0.1 ml) at which the vial graphic reads full.
FULL_SCALE_MCG = 500.0

# U-100 insulin syringe: 100 units per ml.
UNITS_PER_ML = 100


def _clamp(value: float, bounds: Tuple[float, float]) -> float:
    low, high = bounds
    return max(low, min(high, value))


@dataclass(frozen=True)
class Reconstitution:
    peptide_mg: float
    water_ml: float
    mcg_per_tenth_ml: float
    fill_percentage: float
    dose_mcg: Optional[float] = None
    dose_units: Optional[float] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "peptide_mg": self.peptide_mg,
            "water_ml": self.water_ml,
            "mcg_per_0_1ml": self.mcg_per_tenth_ml,
            "mcg_per_10_units": self.mcg_per_tenth_ml,
            "fill_percentage": self.fill_percentage,
            "dose_mcg": self.dose_mcg,
            "dose_units": self.dose_units,
        }


def concentration_mcg_per_tenth_ml(peptide_mg: float, water_ml: float) -> float:
    """mcg of peptide in 0.1 ml (10 units) of reconstituted solution."""
    if water_ml <= 0:
        raise ValueError("Water volume must be greater than zero")
    return round(peptide_mg * 1000 / water_ml * 0.1, 2)


def fill_percentage(concentration: float) -> float:
    return min(concentration / FULL_SCALE_MCG * 100, 100.0)


def units_for_dose(dose_mcg: float, peptide_mg: float, water_ml: float) -> float:
    """Syringe units (0.01 ml each) that deliver dose_mcg."""
    if water_ml <= 0:
        raise ValueError("Water volume must be greater than zero")
    if peptide_mg <= 0:
        raise ValueError("Peptide amount must be greater than zero")
    mcg_per_ml = peptide_mg * 1000 / water_ml
    return round(dose_mcg / mcg_per_ml * UNITS_PER_ML, 1)


def reconstitute(peptide_mg: float, water_ml: float, dose_mcg: Optional[float] = None) -> Reconstitution:
    """Clamp inputs to the calculator ranges and compute the readout."""
    if water_ml <= 0:
        raise ValueError("Water volume must be greater than zero")
    mg = _clamp(float(peptide_mg), PEPTIDE_MG_RANGE)
    ml = _clamp(float(water_ml), WATER_ML_RANGE)
    conc = concentration_mcg_per_tenth_ml(mg, ml)
    units = units_for_dose(dose_mcg, mg, ml) if dose_mcg else None
    return Reconstitution(
        peptide_mg=mg,
        water_ml=ml,
        mcg_per_tenth_ml=conc,
        fill_percentage=fill_percentage(conc),
        dose_mcg=dose_mcg,
        dose_units=units,
    )
