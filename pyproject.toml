[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "planar_slam"
version = "0.1.0"
description = "2D lidar SLAM: scan matching, likelihood fields, occupancy grids, submaps and loop closing"
requires-python = ">=3.10"
keywords = ["slam", "lidar", "icp", "occupancy-grid", "likelihood-field", "pose-graph", "robotics"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: Scientific/Engineering",
]
dependencies = [
    "numpy",
    "scipy",
    "pillow",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["planar_slam"]

[tool.pytest.ini_options]
addopts = "-ra"
