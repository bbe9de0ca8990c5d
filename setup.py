#!/usr/bin/env python3

from setuptools import setup, find_packages

setup(
    name="videodupfinder",
    version="1.0.0",
    description="Near-duplicate video finder based on cached perceptual hashes",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "numpy>=2.0.0",
        "scipy>=1.7.0",
        "Pillow>=9.1.0",
        "tqdm>=4.50.0",
        "colorama>=0.4.6",
        "psutil>=5.8.0",
    ],
    extras_require={
        'test': ['pytest>=7.0'],
    },
    entry_points={
        'console_scripts': [
            'videodupfinder=videodupfinder.videodupfinder_main:main',
        ],
    },
    python_requires='>=3.10',
)
