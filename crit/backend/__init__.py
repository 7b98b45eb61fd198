"""
Review server

Serves the review UI and the JSON API it talks to.

Usage:
    crit serve --port 3847
"""
from .server import create_app, run_server, decode_data_url

__all__ = ["create_app", "run_server", "decode_data_url"]
