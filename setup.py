#!/usr/bin/env python
"""Setup script for the forge_routing package."""

from setuptools import setup

setup(
    name="forge_routing",
    version="0.1.0",
    description="Compiled, cache-backed HTTP request routing for the Forge Framework",
    author="Forge Framework",
    author_email="forge@example.com",
    packages=["forge_routing"],
    package_dir={"forge_routing": "."},
    install_requires=[
        "hypercorn>=0.14.0",
        "kink>=0.6.0",
        "multidict>=6.0.0",
        "orjson>=3.8.0",
        "pyyaml>=6.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "forge-routes=forge_routing.cli:main",
        ],
    },
    python_requires=">=3.8",
)
