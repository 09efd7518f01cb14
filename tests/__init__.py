"""
Floor-plan GPS calibration test suite

Structure:
- unit/: Unit tests for individual components (solver, session, sampler, ...)
- integration/: Calibration flow end to end, CLI and HTTP service
"""
