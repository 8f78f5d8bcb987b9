"""
Transformation framework — the counter protocol shared by every pass.

Each transformation numbers its opportunities 1..N in a deterministic
traversal order.  A run is parameterised by a 1-based counter selecting
exactly one opportunity, and ends in one of three outcomes:

  • success         — the selected instance was rewritten
  • no-instance     — the counter exceeds the number of instances
  • internal-error  — an invariant between passes did not hold; no output
"""

import logging
from enum import Enum
from typing import Dict, Optional, Type

from pydantic import BaseModel

from arraydim.scope import TranslationUnit

logger = logging.getLogger(__name__)


class InternalConsistencyError(RuntimeError):
    """An assumption established during collection failed during rewriting."""


class TransformStatus(str, Enum):
    SUCCESS = "success"
    NO_INSTANCE = "no-instance"
    INTERNAL_ERROR = "internal-error"


class TransformOutcome(BaseModel):
    transformation: str
    counter: int
    status: TransformStatus
    instance_count: int = 0
    output: Optional[str] = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.status == TransformStatus.SUCCESS


class Transformation:
    """Base class: subclasses implement ``collect()`` and ``rewrite()``."""

    name: str = ""
    description: str = ""

    def __init__(self, counter: int = 1, defines: Optional[Dict[str, str]] = None):
        if counter < 1:
            raise ValueError(f"Invalid counter {counter}: counters start at 1")
        self.counter = counter
        self.defines = dict(defines or {})

    def parse(self, source, source_name: str = "<input>") -> TranslationUnit:
        return TranslationUnit.from_text(source, name=source_name, defines=self.defines)

    def collect(self, unit: TranslationUnit):
        """Return (instance_count, selected instance or None)."""
        raise NotImplementedError

    def rewrite(self, unit: TranslationUnit, selected) -> str:
        """Return the rewritten source text for the selected instance."""
        raise NotImplementedError

    def query_instances(self, source, source_name: str = "<input>") -> int:
        count, _ = self.collect(self.parse(source, source_name))
        return count

    def transform(self, source, source_name: str = "<input>") -> TransformOutcome:
        unit = self.parse(source, source_name)
        count, selected = self.collect(unit)

        if selected is None:
            logger.info("%s: counter %d exceeds %d instance(s) in %s",
                        self.name, self.counter, count, source_name)
            return TransformOutcome(
                transformation=self.name, counter=self.counter,
                status=TransformStatus.NO_INSTANCE, instance_count=count,
                message=f"No instance at counter {self.counter} "
                        f"({count} instance(s) available)",
            )

        try:
            output = self.rewrite(unit, selected)
        except InternalConsistencyError as e:
            logger.error("%s: internal consistency violation in %s: %s",
                         self.name, source_name, e)
            return TransformOutcome(
                transformation=self.name, counter=self.counter,
                status=TransformStatus.INTERNAL_ERROR, instance_count=count,
                message=str(e),
            )

        return TransformOutcome(
            transformation=self.name, counter=self.counter,
            status=TransformStatus.SUCCESS, instance_count=count,
            output=output,
        )


# ═══════════════════════════════════════════════════════════════════════
#  Registry
# ═══════════════════════════════════════════════════════════════════════

_TRANSFORMATIONS: Dict[str, Type[Transformation]] = {}


def register_transformation(cls: Type[Transformation]) -> Type[Transformation]:
    """Class decorator: make a transformation available by its name."""
    if not cls.name:
        raise ValueError(f"{cls.__name__} has no name")
    _TRANSFORMATIONS[cls.name] = cls
    return cls


def get_transformation(name: str) -> Type[Transformation]:
    try:
        return _TRANSFORMATIONS[name]
    except KeyError:
        known = ", ".join(sorted(_TRANSFORMATIONS)) or "none"
        raise KeyError(f"Unknown transformation '{name}' (known: {known})") from None


def get_all_transformations() -> Dict[str, Type[Transformation]]:
    return dict(_TRANSFORMATIONS)
