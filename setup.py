"""
clubdocs setup.py — Package configuration and CLI entry point.
"""

from setuptools import find_packages, setup

setup(
    name="clubdocs",
    version="1.0.0",
    description="clubdocs — Club document assignment & review workflow engine",
    packages=find_packages(include=["clubdocs", "clubdocs.*"]),
    python_requires=">=3.11",
    entry_points={
        "console_scripts": [
            "clubdocs=clubdocs.cli:main",
        ],
    },
    install_requires=[
        "sqlalchemy>=2.0",
        "psycopg2-binary>=2.9",
        "pydantic>=2.5",
        "pyyaml>=6.0",
        "httpx>=0.27",
        "fastapi>=0.110",
        "uvicorn>=0.29",
        "python-multipart>=0.0.9",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
        ],
    },
)
