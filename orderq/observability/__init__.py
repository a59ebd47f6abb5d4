"""Observability - logging and run telemetry"""
