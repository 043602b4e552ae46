"""Setup script for the Apple Store Watch package."""

from setuptools import setup
from pathlib import Path

# Read README for long description
readme_path = Path(__file__).parent / "README.md"
long_description = readme_path.read_text(encoding="utf-8") if readme_path.exists() else ""

# Read requirements
requirements_path = Path(__file__).parent / "requirements.txt"
requirements = []
if requirements_path.exists():
    requirements = [
        line.strip()
        for line in requirements_path.read_text(encoding="utf-8").splitlines()
        if line.strip() and not line.startswith("#")
    ]

setup(
    name="apple-store-watch",
    version="1.0.0",
    description="Apple Store in-store pickup availability watcher with sound and push alerts",
    long_description=long_description,
    long_description_content_type="text/markdown",
    py_modules=[
        "alerts",
        "audio",
        "catalog",
        "config",
        "engine",
        "errors",
        "lifecycle",
        "logging_config",
        "main",
        "memory_monitor",
        "models",
        "notifications",
        "persistence",
        "poller",
        "utils",
        "watchlist",
    ],
    packages=["inventory"],
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: End Users/Desktop",
        "Topic :: Internet :: WWW/HTTP",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Operating System :: OS Independent",
        "Framework :: AsyncIO",
    ],
    python_requires=">=3.10",
    install_requires=requirements,
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-mock>=3.10.0",
            "pytest-cov>=4.0.0",
            "mypy>=1.0.0",
            "ruff>=0.1.0",
            "black>=23.0.0",
        ],
        "test": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-mock>=3.10.0",
            "pytest-cov>=4.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "apple-store-watch=main:cli",
        ],
    },
    keywords=[
        "apple", "iphone", "stock", "availability", "pickup",
        "monitoring", "notifications", "bark"
    ],
)
