"""
Clinical threshold bands used by the risk scorer and the health score.

The two consumers band the same metrics differently: the risk
scorer triages (four temperature tiers), the health score grades wellness
(two temperature tiers).
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class Band:
    """Inclusive numeric range."""

    low: float
    high: float

    def contains(self, value: float) -> bool:
        return self.low <= value <= self.high


@dataclass(frozen=True)
class PressureLimit:
    """Upper blood pressure limit; a reading is within it when both values are."""

    systolic: int
    diastolic: int

    def admits(self, systolic: float, diastolic: float) -> bool:
        return systolic <= self.systolic and diastolic <= self.diastolic


# Heart rate (BPM)
HEART_RATE_NORMAL = Band(60, 100)
HEART_RATE_ELEVATED = Band(50, 120)  # outside NORMAL but inside this -> medium

# Blood pressure (mmHg)
BLOOD_PRESSURE_OPTIMAL = PressureLimit(systolic=120, diastolic=80)
BLOOD_PRESSURE_ELEVATED = PressureLimit(systolic=140, diastolic=90)

# Oxygen saturation (%)
OXYGEN_NORMAL_MIN = 95
OXYGEN_LOW_MIN = 90  # below this is critical

# Body temperature (°F), risk scorer bands
TEMPERATURE_NORMAL = Band(97.0, 100.4)
TEMPERATURE_SEVERE = Band(95.0, 103.0)  # outside this -> high

# Health score weights in percent; they sum to 100
SCORE_WEIGHTS: dict[str, int] = {
    "heart_rate": 25,
    "blood_pressure": 30,
    "oxygen": 25,
    "temperature": 20,
}

SCORE_OPTIMAL = 100
SCORE_FAIR = 70
SCORE_POOR = 40
SCORE_TEMPERATURE_OFF = 60

SCORE_TEMPERATURE_OPTIMAL = Band(97.0, 99.5)

# Physiologically plausible envelope enforced by input validation
PLAUSIBLE_HEART_RATE = Band(30, 220)
PLAUSIBLE_SYSTOLIC = Band(70, 250)
PLAUSIBLE_DIASTOLIC = Band(40, 150)
PLAUSIBLE_OXYGEN = Band(70, 100)
PLAUSIBLE_TEMPERATURE = Band(90.0, 110.0)
