#!/usr/bin/env python3
"""
Setup script for SfM Bundle Adjustment
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read README
readme_path = Path(__file__).parent / "README.md"
long_description = readme_path.read_text() if readme_path.exists() else ""

setup(
    name="sfm-bundle-adjustment",
    version="0.1.0",
    description="Levenberg-Marquardt bundle adjustment with a Schur complement conjugate gradient solver",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="Minhyeok Im",
    author_email="minhyeok0104@gmail.com",
    url="https://github.com/yourusername/Enhanced-Structure-from-Motion",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.9",
    install_requires=[
        "numpy>=1.24.0",
        "scipy>=1.12.0",
        "tqdm>=4.65.0",
        "psutil>=5.9.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "black>=22.0.0",
            "flake8>=5.0.0",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Science/Research",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Topic :: Scientific/Engineering :: Computer Vision",
    ],
    keywords="bundle-adjustment, structure-from-motion, levenberg-marquardt, sparse-optimization",
)
