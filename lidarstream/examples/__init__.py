"""Synthetic capture generation."""

from .synthetic import generate_capture, make_sensor_info

__all__ = ["generate_capture", "make_sensor_info"]
