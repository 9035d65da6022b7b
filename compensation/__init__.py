"""
Motion-Compensated Measurement Core

Corrects distance, area, volume and angle measurements for device motion
and scores how far each result can be trusted.

Pipeline stages:
1. Ingest - Rolling motion history and stability classification
2. Predict - Short-horizon motion prediction
3. Compensate - Linear, angular, predictive and adaptive correction
4. Assess - Error bound and accuracy tier
5. Validate - Precision, consistency, outlier and physical checks
6. Calibrate - Point-level calibration and expiry
"""

__version__ = "0.1.0"
