"""Replay recorded browser steps against a live Playwright session and capture telemetry."""
