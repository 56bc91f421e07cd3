"""
Setup script for the globemesh package.
"""

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="globemesh",
    version="0.1.0",
    author="PhD Student",
    description="Cubed-sphere spectral-element mesher for the whole Earth",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    package_data={
        'globemesh': ['models/*.nd'],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Science/Research",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Scientific/Engineering :: Physics",
    ],
    python_requires=">=3.9",
    install_requires=[
        "numpy>=1.20.0",
        "scipy>=1.7.0",
        "obspy>=1.3.0",
    ],
    extras_require={
        "dev": [
            "pytest>=6.0",
            "black",
            "flake8",
            "mypy",
        ],
        "meshing": [
            "pyvista>=0.40.0",
        ],
        "all": [
            "pytest>=6.0",
            "black",
            "flake8",
            "mypy",
            "pyvista>=0.40.0",
        ],
    },
    keywords="seismology, spectral-elements, cubed-sphere, mesh, earth-models",
)
