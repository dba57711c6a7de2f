from dataclasses import dataclass, field
from typing import Any

import numpy as np


PART_TYPE_TRACK = 0
PART_TYPE_V0 = 1
PART_TYPE_V0_CHILD = 2

COLLISION_TREE = "O2femtodreamcols"
PARTICLE_TREE = "O2femtodreamparts"

# Placeholder written for quantities the filter does not compute.
UNSET_EVENT_PROPERTY = -2.0

PARTICLE_COLUMNS = {
    "fIndexFemtoDreamCollisions": np.int32,
    "fPt": np.float32,
    "fEta": np.float32,
    "fPhi": np.float32,
    "fPartType": np.int32,
    "fCut": np.uint32,
    "fPIDCut": np.uint32,
    "fTempFitVar": np.float32,
    "fChildrenIds0": np.int32,
    "fChildrenIds1": np.int32,
    "fMLambda": np.float32,
    "fMAntiLambda": np.float32,
}


@dataclass
class FemtoCollisionTable:
    pos_z: list[np.ndarray] = field(default_factory=list)
    mult_v0m: list[np.ndarray] = field(default_factory=list)
    mult_ntr: list[np.ndarray] = field(default_factory=list)
    size: int = 0

    def append(self, pos_z: Any, mult_v0m: Any, mult_ntr: Any) -> np.ndarray:
        """Append rows and return their row indices."""
        pos_z = np.atleast_1d(np.asarray(pos_z, dtype=np.float32))
        n = len(pos_z)
        self.pos_z.append(pos_z)
        self.mult_v0m.append(np.broadcast_to(np.asarray(mult_v0m, dtype=np.float32), (n,)).copy())
        self.mult_ntr.append(np.broadcast_to(np.asarray(mult_ntr, dtype=np.int32), (n,)).copy())
        indices = np.arange(self.size, self.size + n, dtype=np.int32)
        self.size += n
        return indices

    def columns(self) -> dict[str, np.ndarray]:
        pos_z = _concat(self.pos_z, np.float32)
        return {
            "fPosZ": pos_z,
            "fMultV0M": _concat(self.mult_v0m, np.float32),
            "fMultNtr": _concat(self.mult_ntr, np.int32),
            "fSphericity": np.full(len(pos_z), UNSET_EVENT_PROPERTY, dtype=np.float32),
            "fMagField": np.full(len(pos_z), UNSET_EVENT_PROPERTY, dtype=np.float32),
        }


@dataclass
class FemtoParticleTable:
    chunks: list[dict[str, np.ndarray]] = field(default_factory=list)
    size: int = 0

    def append(
        self,
        collision_index: Any,
        pt: Any,
        eta: Any,
        phi: Any,
        part_type: Any,
        cut: Any,
        pid_cut: Any,
        temp_fit_var: Any,
        children: tuple[Any, Any] = (0, 0),
        m_lambda: Any = 0.0,
        m_anti_lambda: Any = 0.0,
    ) -> np.ndarray:
        """Append particle rows and return their row indices.

        ``pt`` fixes the number of rows; every other argument is either a
        scalar shared by all rows or an array of the same length.
        """
        n = len(np.atleast_1d(pt))
        values = {
            "fIndexFemtoDreamCollisions": collision_index,
            "fPt": pt,
            "fEta": eta,
            "fPhi": phi,
            "fPartType": part_type,
            "fCut": cut,
            "fPIDCut": pid_cut,
            "fTempFitVar": temp_fit_var,
            "fChildrenIds0": children[0],
            "fChildrenIds1": children[1],
            "fMLambda": m_lambda,
            "fMAntiLambda": m_anti_lambda,
        }
        self.chunks.append(
            {
                name: np.broadcast_to(np.asarray(values[name], dtype=dtype), (n,)).copy()
                for name, dtype in PARTICLE_COLUMNS.items()
            }
        )
        indices = np.arange(self.size, self.size + n, dtype=np.int32)
        self.size += n
        return indices

    def columns(self) -> dict[str, np.ndarray]:
        """Columns with rows ordered by collision, keeping insertion order inside a collision.

        Row reordering is applied to the children indices of V0 rows as well.
        """
        cols = {
            name: _concat([chunk[name] for chunk in self.chunks], dtype) for name, dtype in PARTICLE_COLUMNS.items()
        }
        order = np.argsort(cols["fIndexFemtoDreamCollisions"], kind="stable")
        new_position = np.empty_like(order)
        new_position[order] = np.arange(len(order))
        cols = {name: values[order] for name, values in cols.items()}
        is_v0 = cols["fPartType"] == PART_TYPE_V0
        for child in ("fChildrenIds0", "fChildrenIds1"):
            remapped = new_position[np.where(is_v0, cols[child], 0)] if len(order) else cols[child]
            cols[child] = np.where(is_v0, remapped, cols[child]).astype(np.int32)
        return cols


def _concat(chunks: list[np.ndarray], dtype: Any) -> np.ndarray:
    if not chunks:
        return np.zeros(0, dtype=dtype)
    return np.concatenate(chunks).astype(dtype)


@dataclass
class FemtoTables:
    collisions: FemtoCollisionTable = field(default_factory=FemtoCollisionTable)
    particles: FemtoParticleTable = field(default_factory=FemtoParticleTable)
