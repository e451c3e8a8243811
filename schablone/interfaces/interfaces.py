"""
Core data interfaces for schablone framework.

These interfaces define the standardized data structures passed between the
detection nodes: trained templates, scenes, objectness windows, hashing
candidates and verified matches.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import numpy.typing as npt

from ..core.errors import DataQualityError

BBox = Tuple[int, int, int, int]


@dataclass
class Pose:
    """
    Pose interface containing rotation, translation and confidence scores.

    Attributes:
        rotation: Rotation matrix (3, 3)
        translation: Translation vector (3,)
        scores: Confidence scores dictionary
        metadata: Additional metadata dictionary
    """

    rotation: npt.NDArray[np.float64]
    translation: npt.NDArray[np.float64]
    scores: Dict[str, float] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class BoundingBoxes:
    """
    Bounding boxes interface for detection results.

    Attributes:
        boxes: Bounding boxes as numpy array (N, 4) in [x1, y1, x2, y2] format
        scores: Confidence scores as numpy array (N,)
        labels: Class labels as numpy array (N,)
        class_names: List of class names corresponding to labels
        metadata: Additional metadata dictionary
    """

    boxes: npt.NDArray[np.float32]
    scores: npt.NDArray[np.float32]
    labels: npt.NDArray[np.int32]
    class_names: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Camera:
    """
    Camera parameters of a rendered template view.

    Attributes:
        K: Intrinsics matrix (3, 3)
        R: Rotation matrix (3, 3), model to camera
        t: Translation vector (3,), model to camera
    """

    K: npt.NDArray[np.float64]
    R: npt.NDArray[np.float64]
    t: npt.NDArray[np.float64]


@dataclass(frozen=True)
class TemplateFeatures:
    """
    Quantized descriptors of a template's sampled points.

    Attributes:
        orientation_gradients: Gradient orientation bin per edge point, [0, 5)
        surface_normals: Surface normal bin per stable point, [0, 8)
        depths: Raw depth per stable point
        colors: HSV color per stable point (N, 3)
    """

    orientation_gradients: npt.NDArray[np.uint8]
    surface_normals: npt.NDArray[np.uint8]
    depths: npt.NDArray[np.float32]
    colors: npt.NDArray[np.uint8]

    def __len__(self) -> int:
        return len(self.orientation_gradients)

    @property
    def median_depth(self) -> float:
        """Median of the valid stable point depths, 0 if there are none."""
        valid = self.depths[self.depths > 0]
        return float(np.median(valid)) if len(valid) else 0.0


@dataclass(frozen=True, eq=False)
class Template:
    """
    A single rendered view of an object.

    Templates compare and hash by identity so they can key vote accumulators.

    Attributes:
        id: Template identifier, unique within a training run
        obj_id: Object identifier
        gray: Grayscale image (H, W) in [0, 1]
        hsv: HSV image (H, W, 3) in OpenCV ranges
        depth: Raw depth map (H, W), values <= 0 are invalid
        obj_bb: Object bounding box (x, y, width, height) in template pixels
        diameter: Physical object diameter in depth units
        camera: Camera parameters of the view
        edge_points: Sampled edge points (N, 2) as (x, y)
        stable_points: Sampled stable points (N, 2) as (x, y)
        features: Descriptors of the sampled points
        metadata: Additional metadata dictionary
    """

    id: int
    obj_id: int
    gray: npt.NDArray[np.float32]
    hsv: npt.NDArray[np.uint8]
    depth: npt.NDArray[np.float32]
    obj_bb: BBox
    diameter: float
    camera: Optional[Camera] = None
    edge_points: Optional[npt.NDArray[np.int64]] = None
    stable_points: Optional[npt.NDArray[np.int64]] = None
    features: Optional[TemplateFeatures] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_trained(self) -> bool:
        return self.features is not None

    @property
    def area(self) -> int:
        return int(self.obj_bb[2] * self.obj_bb[3])

    def validate(self) -> None:
        """
        Check the template grids and bounding box.

        Raises:
            DataQualityError: If the grids are misaligned, the bounding box
                leaves the image or the diameter is not positive
        """
        gray = np.asarray(self.gray)
        depth = np.asarray(self.depth)
        hsv = np.asarray(self.hsv)
        if gray.ndim != 2 or depth.shape != gray.shape or hsv.shape[:2] != gray.shape:
            raise DataQualityError(
                f"Template {self.id} grids are not aligned: gray {gray.shape}, "
                f"depth {depth.shape}, hsv {hsv.shape}"
            )
        if not np.all(np.isfinite(depth)):
            raise DataQualityError(f"Template {self.id} depth contains NaN or Inf values")
        x, y, w, h = self.obj_bb
        if w <= 0 or h <= 0 or x < 0 or y < 0 or x + w > gray.shape[1] or y + h > gray.shape[0]:
            raise DataQualityError(
                f"Template {self.id} bounding box {self.obj_bb} lies outside the image"
            )
        if self.diameter <= 0:
            raise DataQualityError(f"Template {self.id} has non-positive diameter")

    def __repr__(self) -> str:
        return f"Template(id={self.id}, obj_id={self.obj_id}, obj_bb={self.obj_bb})"


@dataclass(frozen=True)
class Group:
    """
    All templates of one object.

    Attributes:
        obj_id: Object identifier
        templates: Templates of the object, in training order
    """

    obj_id: int
    templates: Tuple[Template, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "templates", tuple(self.templates))
        for template in self.templates:
            if template.obj_id != self.obj_id:
                raise DataQualityError(
                    f"Template {template.id} belongs to object {template.obj_id}, "
                    f"not to group {self.obj_id}"
                )

    def __len__(self) -> int:
        return len(self.templates)

    def __iter__(self):
        return iter(self.templates)


@dataclass(frozen=True)
class HashTableCandidate:
    """
    Vote accumulator of one template during a single window query.

    Attributes:
        template: Candidate template
        votes: Number of hash buckets the template was found in
    """

    template: Template
    votes: int = 0

    def vote(self, weight: int = 1) -> HashTableCandidate:
        """Return a candidate with ``weight`` more votes."""
        if weight < 0:
            raise ValueError(f"Vote weight must be >= 0, got {weight}")
        return HashTableCandidate(self.template, self.votes + weight)


@dataclass
class Window:
    """
    Scene region that passed objectness detection.

    Attributes:
        x: Left coordinate
        y: Top coordinate
        width: Window width
        height: Window height
        edgels: Depth edgels inside the window
        candidates: Candidate templates ordered by descending votes
    """

    x: int
    y: int
    width: int
    height: int
    edgels: int = 0
    candidates: List[HashTableCandidate] = field(default_factory=list)

    @property
    def tl(self) -> Tuple[int, int]:
        return self.x, self.y

    @property
    def br(self) -> Tuple[int, int]:
        return self.x + self.width, self.y + self.height

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height

    @property
    def area(self) -> int:
        return self.width * self.height

    @property
    def center(self) -> Tuple[int, int]:
        return self.x + self.width // 2, self.y + self.height // 2

    def has_candidates(self) -> bool:
        return len(self.candidates) > 0

    def with_candidates(self, candidates: Sequence[HashTableCandidate]) -> Window:
        """Return a copy of the window holding ``candidates``."""
        return dataclasses.replace(self, candidates=list(candidates))


@dataclass(frozen=True, eq=False)
class Match:
    """
    A verified detection.

    Attributes:
        template: Winning template, its camera is the coarse pose
        bbox: Bounding box (x, y, width, height) in scene pixels
        score: Mean point agreement of the verification tests
        votes: Votes the template collected while hashing
        test_scores: Point agreement ratio per verification test
        window: Window the match was found in
    """

    template: Template
    bbox: BBox
    score: float
    votes: int = 0
    test_scores: Dict[str, float] = field(default_factory=dict)
    window: Optional[Window] = None

    @classmethod
    def from_candidate(
        cls,
        candidate: HashTableCandidate,
        window: Window,
        test_scores: Dict[str, float],
    ) -> Match:
        """
        Promote a hashing candidate that survived verification to a match.

        Args:
            candidate: Candidate that passed every test
            window: Window the candidate was verified in
            test_scores: Agreement ratio of each point based test

        Returns:
            Match placed at the window with the template's box size
        """
        bb = candidate.template.obj_bb
        score = float(np.mean(list(test_scores.values()))) if test_scores else 0.0
        return cls(
            template=candidate.template,
            bbox=(window.x, window.y, int(bb[2]), int(bb[3])),
            score=score,
            votes=candidate.votes,
            test_scores=dict(test_scores),
            window=window,
        )

    @property
    def obj_id(self) -> int:
        return self.template.obj_id

    @property
    def pose(self) -> Optional[Pose]:
        """Pose of the winning template's camera, if it has one."""
        camera = self.template.camera
        if camera is None:
            return None
        return Pose(
            rotation=np.asarray(camera.R, dtype=np.float64),
            translation=np.asarray(camera.t, dtype=np.float64),
            scores={"score": self.score, "votes": float(self.votes)},
            metadata={"template_id": self.template.id, "obj_id": self.obj_id},
        )

    def __repr__(self) -> str:
        return (
            f"Match(obj_id={self.obj_id}, template={self.template.id}, "
            f"bbox={self.bbox}, score={self.score:.3f}, votes={self.votes})"
        )


@dataclass
class Scene:
    """
    Scene interface holding the aligned input grids and detection results.

    Attributes:
        hsv: HSV image (H, W, 3) in OpenCV ranges
        gray: Grayscale image (H, W) in [0, 1]
        depth: Raw depth map (H, W), values <= 0 are invalid
        depth_norm: Depth map normalized into [0, 1]
        windows: Windows produced or filtered by the nodes
        matches: Verified matches
        metadata: Additional metadata dictionary
    """

    hsv: npt.NDArray[np.uint8]
    gray: npt.NDArray[np.float32]
    depth: npt.NDArray[np.float32]
    depth_norm: npt.NDArray[np.float32]
    windows: List[Window] = field(default_factory=list)
    matches: List[Match] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_depth(
        cls,
        hsv: np.ndarray,
        gray: np.ndarray,
        depth: np.ndarray,
        depth_scale: float,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Scene:
        """
        Build a scene, normalizing raw depth with ``depth_scale``.

        Non-finite depth samples are stored as 0, the invalid depth value.

        Args:
            hsv: HSV image (H, W, 3)
            gray: Grayscale image (H, W) in [0, 1]
            depth: Raw depth map (H, W)
            depth_scale: Factor mapping raw depth into [0, 1]
            metadata: Optional metadata dictionary

        Returns:
            Scene instance
        """
        depth = np.asarray(depth, dtype=np.float32)
        depth = np.where(np.isfinite(depth), depth, 0.0).astype(np.float32)
        return cls(
            hsv=np.asarray(hsv, dtype=np.uint8),
            gray=np.asarray(gray, dtype=np.float32),
            depth=depth,
            depth_norm=np.clip(depth * depth_scale, 0.0, 1.0).astype(np.float32),
            metadata=metadata or {},
        )

    @property
    def shape(self) -> Tuple[int, int]:
        return self.depth.shape[0], self.depth.shape[1]

    def validate(self) -> None:
        """
        Check the scene grids.

        Raises:
            DataQualityError: If a grid is empty, misshaped or not finite
        """
        for name in ("gray", "depth", "depth_norm"):
            grid = getattr(self, name)
            if grid is None or np.asarray(grid).ndim != 2 or np.asarray(grid).size == 0:
                raise DataQualityError(f"Scene {name} must be a non-empty 2D grid")
            if not np.all(np.isfinite(grid)):
                raise DataQualityError(f"Scene {name} contains NaN or Inf values")

        if self.hsv is None or self.hsv.ndim != 3 or self.hsv.shape[2] != 3:
            raise DataQualityError("Scene hsv must be a (H, W, 3) grid")

        shapes = {
            "hsv": self.hsv.shape[:2],
            "gray": self.gray.shape,
            "depth": self.depth.shape,
            "depth_norm": self.depth_norm.shape,
        }
        if len(set(shapes.values())) != 1:
            raise DataQualityError(f"Scene grids are not aligned: {shapes}")

    def derive(self, **changes) -> Scene:
        """Return a copy of the scene with some fields replaced."""
        metadata = dict(self.metadata)
        metadata.update(changes.pop("metadata", {}))
        return dataclasses.replace(self, metadata=metadata, **changes)
