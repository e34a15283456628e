"""
Setup shim for sidecar-annotator.
Packaging metadata lives in pyproject.toml (PEP 621); this file only exists
for older tooling that still invokes setup.py directly.
"""

from setuptools import setup

# Metadata, dependencies and the console script are declared in pyproject.toml
setup()
