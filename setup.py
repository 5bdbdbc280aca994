#!/usr/bin/env python3
"""Simple setup script for development."""

from setuptools import setup, find_packages

setup(
    name="site-deployer",
    version="0.1.0",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.11",
    install_requires=[
        "fastapi>=0.109.0",
        "uvicorn[standard]>=0.27.0",
        "pydantic>=2.5.0",
        "pydantic-settings>=2.1.0",
        "httpx>=0.26.0",
        "prometheus-client>=0.19.0",
        "python-multipart>=0.0.6",
        "structlog>=24.1.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "httpx>=0.26.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "site-deployer=site_deployer.__main__:main",
        ],
    },
)
