"""
AffectCoach — Pitch Estimator

Autocorrelation-style fundamental-frequency estimate over one analyser
buffer.  Near-silent buffers never produce a pitch: noise would otherwise
show up as a random high frequency and drag the pitch baseline.
"""

from __future__ import annotations

from typing import Optional

import numpy as np

from ..core.config import calibration, CalibrationConfig


def buffer_rms(buffer: np.ndarray) -> float:
    if buffer.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(np.square(buffer, dtype=np.float64))))


def estimate_pitch(
    buffer: Optional[np.ndarray],
    sample_rate: float,
    cal: CalibrationConfig = calibration,
) -> Optional[float]:
    """
    Return the fundamental frequency in Hz, or None.

    The first `pitch_window` samples are compared with the buffer shifted
    by each candidate lag; correlation(lag) = 1 - mean |x[i] - x[i + lag]|.
    The first run of lags that clears the correlation gate while still
    rising is tracked; when it stops rising the best lag is refined from
    its two neighbours.
    """
    if buffer is None:
        return None
    data = np.asarray(buffer, dtype=np.float64).ravel()
    if data.size == 0:
        return None

    size = min(cal.pitch_window, data.size)
    if buffer_rms(data[:size]) < cal.pitch_rms_gate:
        return None

    max_offset = min(cal.pitch_window - 1, data.size - 1)
    window = data[:size]
    correlations = np.zeros(max_offset + 1)

    best_offset = -1
    best_correlation = 0.0
    last_correlation = 1.0
    found = False

    for offset in range(2, max_offset):
        n = min(size, data.size - offset)
        correlation = 1.0 - float(np.mean(np.abs(window[:n] - data[offset:offset + n])))
        correlations[offset] = correlation

        if correlation > cal.pitch_correlation_gate and correlation > last_correlation:
            found = True
            if correlation > best_correlation:
                best_correlation = correlation
                best_offset = offset
        elif found:
            if 1 < best_offset < max_offset - 1:
                shift = correlations[best_offset + 1] - correlations[best_offset - 1]
                refined = best_offset + shift / (2 * correlations[best_offset])
                return sample_rate / refined
            return sample_rate / best_offset

        last_correlation = correlation

    # Still rising at the last lag
    if found and best_offset > 0:
        return sample_rate / best_offset
    return None
