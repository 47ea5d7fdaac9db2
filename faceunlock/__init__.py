"""
Face Unlock with Liveness Checks and Geometric Templates

This package implements a complete face unlock pipeline:
- Face detection using Haar Cascade
- 6-point facial landmark detection using MediaPipe
- 12-value geometric feature vector per frame
- Liveness scoring from blinks, head pose variation and stable frames
- Guided 4-step enrollment and time-boxed verification
"""

__version__ = "1.0.0"
