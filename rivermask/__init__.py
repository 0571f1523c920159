"""
RiverMask — Seasonal Water Masks, Validated

Builds cloud-filtered, sensor-fused reflectance composites over river
corridors, derives binary water masks from spectral indices or land-cover
probabilities, and validates them against an independent reference with
stratified random sampling (confusion matrix, Kappa, F1, IoU).
"""

__version__ = "0.3.0"
