"""Test package for the visual noise contrast threshold test.

This package contains unit tests for the staircase, noise, renderer and
trial sequencer modules, scripted headless sessions, and a UI smoke test.
The tests run headlessly using pygame's dummy video driver to avoid opening
real windows. To run these tests, execute ``pytest`` from the project root.
"""
