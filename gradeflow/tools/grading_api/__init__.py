"""HTTP API for grading, rewriting and exemplar generation."""

from .app import app, create_app, run_server

__all__ = ['app', 'create_app', 'run_server']
