from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence, Tuple

LabelValues = Tuple[str, ...]


@dataclass(frozen=True)
class MetricDefinition:
    """Declarative definition of an exported metric."""

    name: str
    documentation: str
    label_names: Tuple[str, ...] = field(default_factory=tuple)
    dynamic: bool = False  # cleared at the start of every collection cycle


class MetricInstrument(ABC):
    """Write sink for a single named metric."""

    definition: MetricDefinition

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def label_names(self) -> Tuple[str, ...]:
        return self.definition.label_names

    def _check_arity(self, labels: Sequence[str]) -> LabelValues:
        labels = tuple(labels)
        if len(labels) != len(self.definition.label_names):
            raise ValueError(
                f"Metric '{self.name}' expects {len(self.definition.label_names)} "
                f"label values, got {len(labels)}."
            )
        return labels

    @abstractmethod
    def reset(self) -> None:
        """Drop every observed label combination."""

    @abstractmethod
    def set(self, value: float, labels: Sequence[str] = ()) -> None:
        """Set the series identified by ``labels`` to ``value``."""

    @abstractmethod
    def series(self) -> Dict[LabelValues, float]:
        """Return the currently exported series keyed by label values."""

    def value(self, labels: Sequence[str] = ()) -> Optional[float]:
        return self.series().get(tuple(labels))
