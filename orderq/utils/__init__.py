"""Utilities - HTML, addresses, redaction"""
