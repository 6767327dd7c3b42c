#!/usr/bin/env python3
"""
Setup script for Interval Quiz Bot
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read README if it exists
this_directory = Path(__file__).parent
readme_path = this_directory / "README.md"
long_description = ""
if readme_path.exists():
    long_description = readme_path.read_text(encoding='utf-8')

setup(
    name="interval-quiz-bot",
    version="1.0.0",
    author="Interval Quiz Bot Team",
    author_email="",
    description="Telegram bot that sends certification quiz questions on a per-chat interval and tracks answer statistics",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*", "scripts"]),
    py_modules=["bot", "app_config", "data_manager", "utils"],
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    python_requires=">=3.9",
    install_requires=[
        "python-telegram-bot[job-queue]>=20.0",
        "python-dotenv>=0.19.0",
        "APScheduler>=3.9.0",
        "pytz>=2022.1",
        "SQLAlchemy>=2.0",
        "redis>=5.0.1",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "black>=22.0.0",
            "flake8>=4.0.0",
            "mypy>=0.950",
        ],
        "test": [
            "pytest>=7.0.0",
        ],
        "postgres": [
            "psycopg2-binary>=2.9.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "interval-quiz-bot=bot:run",
        ],
    },
    include_package_data=True,
    zip_safe=False,
)
