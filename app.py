#!/usr/bin/env python3
"""WSGI entry point: ``gunicorn app:app`` or ``flask --app app run``."""

from lemon import create_app

app = create_app()

if __name__ == "__main__":
    app.run(host="0.0.0.0", port=5000)
