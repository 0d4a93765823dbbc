"""mesh2room: idealised room reconstruction from streamed scan fragments."""

from .classifier import SurfaceClassifier
from .config import RoomConfig, load_config
from .errors import ConfigError, FragmentError
from .mesh import RoomMesh
from .reconstructor import WallReconstructor
from .room_builder import RoomBuilder
from .session import ScanSession
from .simplifier import RoomSimplifier
from .statistics import HeightEstimator, ScanStatistics
from .types import (EdgeType, MeshFragment, OpeningType, ProtrusionType, SurfaceType,
                    WindowShape)

__version__ = "0.1.0"
