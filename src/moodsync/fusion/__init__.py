"""Emotion fusion — calibrated, personality-aware multi-modal estimation.

This package turns per-modality classifier outputs (facial, voice, text,
biometric) into a single emotional-state estimate and derives longitudinal
wellness metrics from past estimates.

Architecture
------------
1. **Modality adapter** (`adapter.py`)
   - Validates label-aligned vectors, defaults confidence, maps text
     sentiment onto emotion labels
2. **Calibrator** (`calibration.py`)
   - Per-user, per-modality additive bias, learned from feedback
3. **Context encoder** (`context.py`)
   - Time, weekday, location, activity and time-of-day band → 20 slots
4. **Fusion core** (`core.py`)
   - Fixed-order feature vector → external predictor → normalised distribution
5. **Personality** (`personality.py`)
   - Trait-based reweighting and slow monotone trait drift
6. **Confidence** (`confidence.py`)
   - Modality / fusion / agreement / overall scores, contributions, ranking
7. **Wellness** (`wellness.py`)
   - Dominant emotion, diversity, stability, wellness score and level
8. **Pipeline** (`pipeline.py`)
   - :class:`FusionPipeline`, the entry point wiring all of the above to a
     profile store and an event dispatcher

Limitations
-----------
- Calibration bias and personality traits only ever drift upwards; bias
  is unbounded unless a limit is configured.
- Estimates are probabilistic and never diagnoses.
"""

from moodsync.fusion.models import (
    ConfidenceScores,
    CurrentEmotionAnalysis,
    EmotionScore,
    FusionResult,
    WellnessLevel,
    WellnessReport,
)

__all__ = [
    "ConfidenceScores",
    "CurrentEmotionAnalysis",
    "EmotionScore",
    "FusionResult",
    "WellnessLevel",
    "WellnessReport",
]
