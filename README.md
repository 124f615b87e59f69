# planar_slam

Building blocks for 2D lidar SLAM on single-echo planar laser scans. All images are `numpy` arrays laid out as (row, column, channel). Colours are used exactly as they are passed in. The mapper draws in RGB order.

## Modules

- `planar_slam.geometry`
  - `SE2(x, y, theta)`: an immutable planar rigid transform. It supports `inverse()`, `transform(points)`, `log()` and `*`. Composing with another `SE2` gives an `SE2`. Multiplying by a point or an N×2 array transforms it.
  - `Scan2d`: a laser scan made of `angle_min`, `angle_max`, `angle_increment`, `range_min`, `range_max` and `ranges`. It provides `angle_at`, `is_valid` and `valid_points()`.
  - `normalize_angle`, `bilinear_value` and `fit_line_2d`.
- `planar_slam.frame`
  - `Frame` holds a scan with its `pose` (world) and `pose_submap`.
  - `Frame.dump(filename)` writes the frame to a plain text file, and the class method `Frame.load(filename)` reads it back.
- `planar_slam.icp_2d`
  - `Icp2d` does Gauss-Newton scan matching. Call `set_target` first, then `set_source`.
  - `align_gauss_newton(init_pose)` matches point to point, and `align_gauss_newton_point2plane(init_pose)` matches point to line.
  - Both return the aligned `SE2`, or `None` when fewer than 20 matches are found.
- `planar_slam.likelihood_field`
  - `LikelihoodField` is a 1000×1000 distance field at 20 pixels per metre. It is built from a target scan (`set_target_scan`) or from an occupancy grid (`set_field_image_from_occu_map`).
  - `align_gauss_newton` returns a pose, or `None`.
  - `align_g2o` uses graph optimisation with a Huber kernel and returns a pose.
  - `has_outside_points()` reports whether any source points fell outside the field.
  - `get_field_image()` renders the field in grey.
- `planar_slam.multi_resolution`
  - `MRLikelihoodField` is a four-level field pyramid (2.5, 5, 10 and 20 pixels per metre).
  - `align_g2o` aligns the source scan coarse to fine and returns the pose, or `None` if any level has too few inliers.
- `planar_slam.occupancy_map`
  - `OccupancyMap` is a 1000×1000 `uint8` grid, `occupancy_grid`. The value 127 means unknown; lower values are occupied and higher values are free.
  - `add_lidar_frame(frame, method)` fills the grid with `GridMethod.BRESENHAM` (the default) or `GridMethod.MODEL_POINTS`.
  - `get_occupancy_grid_black_white()` gives an RGB rendering of the grid.
- `planar_slam.graph`
  - This is a small Levenberg-Marquardt pose-graph optimiser: `Optimizer`, `VertexSE2`, `EdgeSE2`, `EdgeSE2LikelihoodField`, `HuberKernel` and `CauchyKernel`.
- `planar_slam.submap`
  - `Submap` is a posed local map made of keyframes, with its own occupancy grid and likelihood field.
- `planar_slam.loop_closing`
  - `LoopClosing` finds older submaps near the current frame and matches the frame against them with `MRLikelihoodField`.
  - It then optimises the submap pose graph and drops loops the graph rejects. Accepted loops are available as `loops` (`LoopConstraint` values).
  - With `debug_path`, it appends one line per candidate match to that file.
- `planar_slam.mapping_2d`
  - `Mapping2D(output_dir=None, viewer=None)` runs the full pipeline: keyframe selection, scan-to-submap matching, submap expansion and optional loop closing.
  - `viewer`, if given, is called as `viewer(window_name, image)` for each rendered view.
  - `output_dir`, if given, receives `submap_<id>.png` for each finished submap. When loop closing is on, it also receives `loops.txt`.
  - `show_global_map(max_size=500)` renders every submap into one image.
- `planar_slam.visualize`
  - `visualize_2d_scan(scan, pose, image=None, color=(0, 0, 0), image_size=800, resolution=20.0, pose_submap=None)` draws a scan and its pose into an image and returns it. When `image` is `None`, it creates a white image first.

## Installation

```
pip install .
```

To run the tests as well:

```
pip install .[test]
pytest
```

## Example

```python
import math
from planar_slam.geometry import SE2, Scan2d
from planar_slam.icp_2d import Icp2d

n = 360
target = Scan2d(
    angle_min=-math.pi,
    angle_max=math.pi,
    angle_increment=2 * math.pi / n,
    range_min=0.1,
    range_max=30.0,
    ranges=[5.0] * n,
)

icp = Icp2d()
icp.set_target(target)
icp.set_source(target)
pose = icp.align_gauss_newton(SE2())   # SE2, or None if too few matches
```

A full run feeds scans to the mapper one at a time:

```python
from planar_slam.mapping_2d import Mapping2D

mapping = Mapping2D(output_dir="out")
mapping.init(with_loop_closing=True)
for scan in scans:          # any iterable of Scan2d
    mapping.process_scan(scan)
global_map = mapping.show_global_map(2000)   # H x W x 3 uint8 array
```

## What it does not do

- The package has no command-line program.
- It does not read recorded sensor logs. You supply the `Scan2d` objects yourself.
- It opens no windows. Rendered views go to the `viewer` callback you pass in, and files go to `output_dir`.
- Only single-echo scans are handled.