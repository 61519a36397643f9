"""moodsync — multi-modal emotion fusion and adaptive calibration engine."""

__version__ = "0.1.0"
