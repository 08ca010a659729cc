"""
ProjectHub setup.py — Package configuration and CLI entry point.
"""

from setuptools import find_packages, setup

setup(
    name="projecthub",
    version="1.0.0",
    description="ProjectHub — project and task management backend with completion rewards",
    packages=find_packages(include=["projecthub", "projecthub.*"]),
    python_requires=">=3.11",
    entry_points={
        "console_scripts": [
            "projecthub=projecthub.cli:main",
        ],
    },
    install_requires=[
        "fastapi>=0.110",
        "uvicorn>=0.29",
        "sqlalchemy>=2.0",
        "psycopg2-binary>=2.9",
        "pydantic>=2.5",
        "redis>=5.0",
        "bcrypt>=4.1",
        "pyyaml>=6.0",
        "httpx>=0.27",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "httpx>=0.27",
        ],
    },
)
