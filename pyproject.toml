[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "loccorr"
version = "0.0.1"
description = "Star image localisation and position correction: background estimation, binary morphology, component labelling and centroid tracking"
requires-python = ">=3.10"
keywords = [
    "astronomy",
    "guiding",
    "centroid",
    "image-processing",
    "morphology",
    "connected-components",
    "median-filter",
    "fits",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Astronomy",
    "Topic :: Scientific/Engineering :: Image Processing",
]
dependencies = [
    "numpy",
    "pillow",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["loccorr"]

[tool.hatch.build.targets.sdist]
include = [
    "loccorr",
    "tests",
    "pyproject.toml",
]

[tool.pytest.ini_options]
addopts = "-ra"
