"""Swath sonar bathymetry reprocessing."""

__version__ = '0.1.0'
