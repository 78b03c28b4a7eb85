"""
Tests package for Hand-Eye Calibration Toolkit

This package contains all test modules for the calibration toolkit,
organized by test type:

- unit/: Unit tests for individual modules
- integration/: Full calibration workflows on synthetic data
- synthetic_data.py: Synthetic scenes shared by both
"""
