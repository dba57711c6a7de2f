"""FT0 timing, amplitude and trigger-bit quantities as RDataFrame column definitions."""

from .settings import FT0Settings


NS_TO_CM = 29.97  # light speed in cm/ns

BCS_PER_ORBIT = 3564
C_SIDE_CHANNEL_OFFSET = 96
N_TRIGGER_BITS = 8

# Value shown for a side without any signal in the per-side sum histograms.
EMPTY_SIDE_SUM = -1e10

HELPERS_CPP = r"""
#include <ROOT/RVec.hxx>

template <typename T>
ROOT::RVecF cfqa_ft0_as_float(const ROOT::RVec<T>& values, float offset = 0.f)
{
  ROOT::RVecF out(values.size());
  for (size_t i = 0; i < values.size(); ++i) {
    out[i] = static_cast<float>(values[i]) + offset;
  }
  return out;
}

ROOT::RVecF cfqa_ft0_concat(const ROOT::RVecF& a, const ROOT::RVecF& c)
{
  ROOT::RVecF out(a);
  out.insert(out.end(), c.begin(), c.end());
  return out;
}

bool cfqa_ft0_has_bit(long mask, int bit) { return (mask >> bit) & 1; }

ROOT::RVecF cfqa_ft0_trigger_bits(long mask, int nbits)
{
  ROOT::RVecF out;
  for (int bit = 0; bit < nbits; ++bit) {
    if ((mask >> bit) & 1) {
      out.push_back(bit);
    }
  }
  return out;
}
"""


def column_definitions(settings: FT0Settings) -> list[tuple[str, str]]:
    """Ordered ``(name, expression)`` pairs defining every quantity the FT0 histograms use."""
    window = float(settings.time_window_ns)
    return [
        ("bcid", f"static_cast<float>(fGlobalBC % {BCS_PER_ORBIT})"),
        ("isVrtTrg", f"cfqa_ft0_has_bit(fTriggerMask, {int(settings.vertex_trigger_bit)})"),
        ("isTimeOk", f"fTimeA < {window} && fTimeC < {window}"),
        ("collTime", "(fTimeA + fTimeC) / 2"),
        ("vrtPos", f"(fTimeC - fTimeA) / 2 * {NS_TO_CM}"),
        ("ampA", "cfqa_ft0_as_float(fAmplitudeA)"),
        ("ampC", "cfqa_ft0_as_float(fAmplitudeC)"),
        ("chID", f"cfqa_ft0_concat(cfqa_ft0_as_float(fChannelA), cfqa_ft0_as_float(fChannelC, {C_SIDE_CHANNEL_OFFSET}.f))"),
        ("amp", "cfqa_ft0_concat(ampA, ampC)"),
        ("sumAmpARaw", "ROOT::VecOps::Sum(ampA, 0.f)"),
        ("sumAmpCRaw", "ROOT::VecOps::Sum(ampC, 0.f)"),
        # The total is taken before the empty-side replacement.
        ("sumAmp", "sumAmpARaw + sumAmpCRaw"),
        ("sumAmpA", f"sumAmpARaw == 0 ? {EMPTY_SIDE_SUM}f : sumAmpARaw"),
        ("sumAmpC", f"sumAmpCRaw == 0 ? {EMPTY_SIDE_SUM}f : sumAmpCRaw"),
        ("sumAmpAC", "sumAmpA + sumAmpC"),
        ("trgBits", f"cfqa_ft0_trigger_bits(fTriggerMask, {N_TRIGGER_BITS})"),
        ("trgBC", "ROOT::RVecF(trgBits.size(), bcid)"),
    ]


# (histogram, x column, y column or None, event filter or None)
FILLS: list[tuple[str, str, str | None, str | None]] = [
    ("hAmpPerChannelID", "chID", "amp", None),
    ("hAmpPerChannelID_VrtTrg", "chID", "amp", "isVrtTrg"),
    ("hSumAmpAvsC", "sumAmpA", "sumAmpC", None),
    ("hSumAmpA", "sumAmpA", None, None),
    ("hSumAmpC", "sumAmpC", None, None),
    ("hSumAmp", "sumAmp", None, None),
    ("hVrtVsCollTime", "vrtPos", "collTime", "isTimeOk"),
    ("hSumAmpAvsC_vrtTrg", "sumAmpA", "sumAmpC", "isVrtTrg"),
    ("hSumAmpA_vrtTrg", "sumAmpA", None, "isVrtTrg"),
    ("hSumAmpC_vrtTrg", "sumAmpC", None, "isVrtTrg"),
    ("hSumAmp_vrtTrg", "sumAmpAC", None, "isVrtTrg"),
    ("hVrtVsCollTime_vrtTrg", "vrtPos", "collTime", "isVrtTrg && isTimeOk"),
    ("hTriggers", "trgBits", None, None),
    ("hTriggersPerBC", "trgBC", "trgBits", None),
]
