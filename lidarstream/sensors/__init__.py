"""Sensor identity, registry and feeds."""
