"""2D lidar SLAM: scan matching, likelihood fields, occupancy grids, submaps and loop closing."""

__version__ = "0.1.0"