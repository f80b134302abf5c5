#!/usr/bin/env python3
"""
Minimal setup.py for package building only.

All configuration is in pyproject.toml.
"""

from setuptools import setup

if __name__ == "__main__":
    setup()
