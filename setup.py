"""
Setup script for nexus-mastery-engine.

Adaptive learning and mastery engine: a per-student mastery ledger over a
curriculum knowledge graph, with nexus scores, prerequisite-gated branches,
spaced-repetition reviews and gamification derived from the ledger.

The 'nexus' command is the CLI entry point; the HTTP service runs from
main.py.
"""

from setuptools import find_packages, setup

setup(
    name="nexus-mastery-engine",
    version="0.1.0",
    description="Adaptive learning and mastery engine with spaced repetition and gamification",
    long_description=open("README.md", encoding="utf-8").read() if __import__("os").path.exists("README.md") else "",
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["config", "main"],
    python_requires=">=3.11",
    install_requires=[
        # CLI
        "typer>=0.9.0",
        "rich>=13.0.0",
        # Database
        "sqlalchemy>=2.0.0",
        "psycopg2-binary>=2.9.0",
        # Config & Validation
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        "pyyaml>=6.0",
        # HTTP
        "fastapi>=0.100.0",
        "uvicorn>=0.23.0",
        "httpx>=0.25.0",
        # Logging
        "loguru>=0.7.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "ruff>=0.1.0",
            "mypy>=1.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "nexus=src.cli.nexus_cli:run",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: Education",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Education",
        "Topic :: Education :: Computer Aided Instruction (CAI)",
    ],
    keywords="learning mastery spaced-repetition gamification education",
)
