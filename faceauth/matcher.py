# faceauth/matcher.py
# Nearest-neighbour face decision over enrolled profiles
import enum
import logging
from dataclasses import dataclass
from typing import Iterable, Optional

import numpy as np

from .config import FACE_DISTANCE_THRESHOLD
from .models import FaceProfile

logger = logging.getLogger(__name__)


class MatchOutcome(str, enum.Enum):
    MATCH = "match"
    NO_MATCH = "no_match"
    NO_ENROLLMENTS = "no_enrollments"


@dataclass(frozen=True)
class MatchDecision:
    outcome: MatchOutcome
    user_id: Optional[str] = None
    distance: Optional[float] = None

    @property
    def matched(self) -> bool:
        return self.outcome is MatchOutcome.MATCH


def euclidean_distance(a, b) -> float:
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    return float(np.linalg.norm(a - b))


def decide(probe, candidates: Iterable[FaceProfile], threshold: float = FACE_DISTANCE_THRESHOLD) -> MatchDecision:
    """
    Full linear scan: Euclidean distance from the probe to every enrolled
    descriptor, accept the nearest one if its distance is <= threshold.

    Ties at the minimum distance go to the earliest registered profile, then
    to the smallest user_id, so the result never depends on store order.
    Profiles whose descriptor has the wrong length or NaN/inf components are
    skipped; a captured descriptor with such components raises ValueError.
    """
    probe = np.asarray(probe, dtype=np.float64).ravel()
    if not np.all(np.isfinite(probe)):
        raise ValueError("captured descriptor has non-finite components")

    usable = []
    for profile in candidates:
        if len(profile.face_descriptor) != probe.shape[0]:
            logger.warning(
                f"Skipping face profile {profile.user_id}: descriptor has "
                f"{len(profile.face_descriptor)} dims, probe has {probe.shape[0]}"
            )
            continue
        if not np.all(np.isfinite(profile.face_descriptor)):
            logger.warning(f"Skipping face profile {profile.user_id}: descriptor has non-finite components")
            continue
        usable.append(profile)

    if not usable:
        return MatchDecision(MatchOutcome.NO_ENROLLMENTS)

    stored = np.asarray([p.face_descriptor for p in usable], dtype=np.float64)
    distances = np.linalg.norm(stored - probe, axis=1)
    best = float(distances.min())

    tied = [p for p, d in zip(usable, distances) if d == best]
    winner = min(tied, key=lambda p: (p.registered_at, p.user_id))

    if best <= threshold:
        return MatchDecision(MatchOutcome.MATCH, user_id=winner.user_id, distance=best)
    return MatchDecision(MatchOutcome.NO_MATCH, distance=best)
