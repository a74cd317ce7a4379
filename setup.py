"""
videoscribe — build script.

Usage:
    # Development (editable install, links to source):
    pip install -e .[test]

    # Run:
    videoscribe VIDEO_ID_OR_URL
"""

from setuptools import setup

APP_NAME = "videoscribe"

setup(
    name=APP_NAME,
    version="1.0.0",
    description="Video transcript service: cache, remote speech-to-text, caption fallback",
    packages=[
        "videoscribe",
        "videoscribe.core",
    ],
    py_modules=["main"],
    install_requires=[
        "requests>=2.28.0",
    ],
    extras_require={
        # The tests use the stdlib unittest runner; pytest is an optional frontend
        "test": ["pytest>=7"],
    },
    python_requires=">=3.10",
    entry_points={
        "console_scripts": [
            "videoscribe=main:main",
        ],
    },
)
