"""Reduce per-frame detections to one stable result."""

from detection.color import RGB, hue_distance
from detection.config import DetectionConfig
from detection.result import ChromakeyResult, DetectionMethod

# Frames whose hue is within this many degrees of a group's first frame join it
HUE_TOLERANCE = 10.0


class VideoSession:
    """Caller-owned, append-only accumulator of per-frame results.

    Not thread-safe: appends and queries from several threads need
    external locking.
    """

    def __init__(self, config: DetectionConfig | None = None):
        # Kept for reference; the consensus itself does not consult it
        self.config = config if config is not None else DetectionConfig()
        self.frame_results: list[ChromakeyResult] = []

    def __len__(self) -> int:
        return len(self.frame_results)

    def add_frame_result(self, result: ChromakeyResult):
        self.frame_results.append(result)

    def group_similar_colors(self) -> list[list[ChromakeyResult]]:
        groups: list[list[ChromakeyResult]] = []
        for result in self.frame_results:
            for group in groups:
                if hue_distance(result.hue, group[0].hue) < HUE_TOLERANCE:
                    group.append(result)
                    break
            else:
                groups.append([result])
        return groups

    def compute_consensus(self) -> ChromakeyResult | None:
        """Average of the largest hue group, discounted by temporal agreement.

        Hue is averaged arithmetically, not circularly.
        """
        if not self.frame_results:
            return None

        largest: list[ChromakeyResult] = []
        for group in self.group_similar_colors():
            if len(group) > len(largest):
                largest = group

        count = len(largest)
        agreement = count / len(self.frame_results)
        avg_confidence = sum(r.confidence for r in largest) / count

        return ChromakeyResult(
            color=RGB(
                int(sum(r.color.r for r in largest) / count + 0.5),
                int(sum(r.color.g for r in largest) / count + 0.5),
                int(sum(r.color.b for r in largest) / count + 0.5),
            ),
            confidence=avg_confidence * agreement,
            coverage=sum(r.coverage for r in largest) / count,
            hue=sum(r.hue for r in largest) / count,
            method=DetectionMethod.HYBRID,
        )
