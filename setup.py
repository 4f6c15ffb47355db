#!/usr/bin/env python
"""Setup script for landcover-aoa package."""

from setuptools import setup, find_packages
import os

# Read the contents of README file
this_directory = os.path.abspath(os.path.dirname(__file__))
with open(os.path.join(this_directory, 'README.md'), encoding='utf-8') as f:
    long_description = f.read()

# Read requirements
with open(os.path.join(this_directory, 'requirements.txt')) as f:
    requirements = [line.strip() for line in f
                    if line.strip() and not line.startswith('#')]

setup(
    name="landcover-aoa",
    version="1.0.0",
    author="najahpokkiri",
    author_email="your.email@example.com",  # Update with your email
    description="Land-cover classification with spatial cross-validation and Area of Applicability",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/najahpokkiri/landcover-aoa",
    packages=find_packages(exclude=["tests", "tests.*", "scripts"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Science/Research",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Topic :: Scientific/Engineering :: GIS",
    ],
    python_requires=">=3.9",
    install_requires=requirements,
    extras_require={
        "dev": [
            "pytest>=6.2.0",
            "pytest-cov>=2.12.0",
            "black>=21.6.0",
            "flake8>=3.9.0",
            "isort>=5.9.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "landcover-folds=landcover_aoa.models.spatial_folds:main",
            "landcover-train=landcover_aoa.models.random_forest:main",
            "landcover-aoa=landcover_aoa.models.aoa:main",
            "landcover-pipeline=landcover_aoa.pipeline:main",
        ],
    },
    include_package_data=True,
    zip_safe=False,
)
