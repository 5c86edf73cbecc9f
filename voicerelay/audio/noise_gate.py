"""Per-frame noise gate and inbound silence pre-filter.

All audio is assumed to be PCM16 little-endian mono.
"""

from __future__ import annotations

import struct

from loguru import logger

# Defaults used by Twilio deployments
DEFAULT_NOISE_THRESHOLD_RATIO = 0.005
DEFAULT_MINIMUM_FLOOR = 100.0
DEFAULT_MIN_CHUNK_SIZE = 20
DEFAULT_PROBE_BYTES = 100


def is_valid_chunk(
    chunk: bytes,
    min_chunk_size: int = DEFAULT_MIN_CHUNK_SIZE,
    probe_bytes: int = DEFAULT_PROBE_BYTES,
) -> bool:
    """Cheap check applied before a fragment enters the frame buffer.

    Fragments shorter than ``min_chunk_size`` bytes, or whose first
    ``probe_bytes`` bytes are all zero, are treated as silence or garbage.
    """
    if len(chunk) < min_chunk_size:
        return False
    return any(chunk[:probe_bytes])


class NoiseGate:
    """Dynamic noise gate judged independently for every frame.

    The gate threshold is ``max(peak * noise_threshold_ratio, minimum_floor)``
    where ``peak`` is the largest absolute sample of the frame itself. Samples
    at or below the threshold are zeroed.

    Attributes:
        noise_threshold_ratio: Fraction of the frame peak used as threshold.
        minimum_floor: Absolute lower bound for the threshold (0-32768).
    """

    def __init__(
        self,
        noise_threshold_ratio: float = DEFAULT_NOISE_THRESHOLD_RATIO,
        minimum_floor: float = DEFAULT_MINIMUM_FLOOR,
    ) -> None:
        self.noise_threshold_ratio = noise_threshold_ratio
        self.minimum_floor = minimum_floor

    def threshold_for(self, peak: int) -> float:
        return max(peak * self.noise_threshold_ratio, self.minimum_floor)

    def process(self, frame: bytes) -> bytes:
        """Gate one frame.

        Returns:
            ``b""`` when no sample clears the threshold (pure noise), else a
            frame of the same length with sub-threshold samples zeroed. On any
            failure the original frame is returned unchanged.
        """
        try:
            n_samples = len(frame) // 2
            samples = struct.unpack(f"<{n_samples}h", frame)
            if not samples:
                return b""

            peak = max(abs(s) for s in samples)
            threshold = self.threshold_for(peak)

            gated = [s if abs(s) > threshold else 0 for s in samples]
            if not any(gated):
                return b""
            return struct.pack(f"<{n_samples}h", *gated)
        except Exception as e:
            logger.error(f"Noise gate failed, passing frame through: {e}")
            return frame
