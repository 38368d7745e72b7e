from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class TargetBox:
    """
    A detected object in original image coordinates (top-left / bottom-right).

    `category` is -1 until a class has been assigned.
    """

    x1: float
    y1: float
    x2: float
    y2: float
    score: float
    category: int = -1

    @property
    def width(self) -> float:
        return self.x2 - self.x1

    @property
    def height(self) -> float:
        return self.y2 - self.y1

    @property
    def area(self) -> float:
        return self.width * self.height

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        return self.x1, self.y1, self.x2, self.y2
