"""
Service — HTTP front for the calibration flow

- POST /tap, /points/{i}/gps, /points/save, /points/undo, /calibration/reset
- GET  /state, /calibration, /placement, /events, /health
- PUT  /calibration (load a record and skip interactive calibration)
"""
