#!/usr/bin/env python
# encoding: UTF-8

import os

from setuptools import setup


long_description = ""
if os.path.isfile("README.rst"):
    long_description = open("README.rst", "r", encoding="UTF-8").read()


setup(
    name="md2gemtext",
    version="0.1.0",
    description="Converts Markdown to Gemtext (Gemini markup format)",
    license="GPLv3",
    long_description=long_description,
    keywords="markdown md convert gemtext gmi gemini docutils markdown-it",
    py_modules=["md2gemtext"],
    python_requires=">=3.9",
    install_requires=[
        "docutils>=0.19",
        "markdown-it-py>=3.0",
        "mdit-py-plugins>=0.4",
        "beautifulsoup4",
    ],
    extras_require={
        "dev": [
            "nox",
            "flake8",
            "pytest",
            "black",
        ]
    },
)
