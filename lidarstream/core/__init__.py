"""Coordinate conversion, frames and shared utilities."""
