"""Blink, head pose and stability signals fused into a liveness score."""
