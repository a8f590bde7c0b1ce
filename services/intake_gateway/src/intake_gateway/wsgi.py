"""WSGI entry point for gunicorn.

Usage:
    gunicorn intake_gateway.wsgi:app --bind 0.0.0.0:8000
"""
from intake_gateway.wiring import build_app

app = build_app()
