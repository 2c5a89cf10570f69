"""Core types shared across recorder, monitor and compiler layers."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class StrategyKind(str, Enum):
    ID = "id"
    PATH_PREDICATE = "xpath"
    ARIA_LABEL = "aria"
    ATTRIBUTE = "attribute"
    CLASS_COMBINATION = "class"
    ANCESTOR_PATH = "path"
    POSITIONAL_INDEX = "nth-of-type"
    TEXT_CONTENT = "text"
    IMAGE_ALT = "img-alt"
    HEADING_CONTEXT = "heading-context"


# Strategies that are only ever promoted to primary when nothing else worked
FALLBACK_ONLY: frozenset[StrategyKind] = frozenset(
    {StrategyKind.TEXT_CONTENT, StrategyKind.IMAGE_ALT, StrategyKind.HEADING_CONTEXT}
)


class TriggerType(str, Enum):
    CLICK = "click"
    INPUT = "input"
    INPUT_CHANGE = "input_change"
    CHANGE = "change"
    KEYDOWN = "keydown"
    SUBMIT = "submit"
    FOCUS = "focus"
    SCROLL = "scroll"
    CHECKPOINT = "checkpoint"
    CAPTURE_POINT = "capture_point"
    STYLE_CHANGE = "style_change"
    EXPAND = "expand"
    STYLE_CHANGES_BATCH = "style_changes_batch"


# Event channels that report the same keystroke more than once
INPUT_FAMILY: frozenset[TriggerType] = frozenset(
    {TriggerType.INPUT, TriggerType.CHANGE, TriggerType.INPUT_CHANGE}
)


class MutationKind(str, Enum):
    CHILD_LIST = "childList"
    ATTRIBUTES = "attributes"


@dataclass(frozen=True)
class NodeRef:
    """Non-owning handle to a document element.

    The key is assigned by the document adapter and is only meaningful to it.
    """

    key: str

    def __str__(self) -> str:
        return self.key


@dataclass(frozen=True)
class Locator:
    expression: str
    strategy: StrategyKind
    scope_hint: str | None = None
    unique: bool = True  # False for best-effort locators


@dataclass(frozen=True)
class LocatorCandidates:
    primary: Locator | None
    fallbacks: list[Locator] = field(default_factory=list)

    @property
    def strategies(self) -> list[StrategyKind]:
        found = [self.primary] if self.primary else []
        return [loc.strategy for loc in found + self.fallbacks]

    @property
    def fallback_expressions(self) -> list[str]:
        return [loc.expression for loc in self.fallbacks]


@dataclass(frozen=True)
class Rect:
    top: float = 0.0
    left: float = 0.0
    width: float = 0.0
    height: float = 0.0

    @property
    def area(self) -> float:
        return self.width * self.height

    def delta(self, other: Rect) -> float:
        """Sum of absolute edge/size differences against another rect."""
        return (
            abs(self.top - other.top)
            + abs(self.left - other.left)
            + abs(self.width - other.width)
            + abs(self.height - other.height)
        )


@dataclass(frozen=True)
class GeometrySnapshot:
    rect: Rect
    scroll_height: float = 0.0
    scroll_width: float = 0.0
    transform: str = "none"
    opacity: float = 1.0
    visibility: str = "visible"
    display: str = "block"


@dataclass(frozen=True)
class MutationRecord:
    kind: MutationKind
    target: NodeRef
    added_nodes: tuple[NodeRef, ...] = ()
    attribute_name: str | None = None
    old_value: str | None = None


@dataclass(frozen=True)
class Viewport:
    width: int = 0
    height: int = 0
    device_pixel_ratio: float = 1.0


@dataclass(frozen=True)
class Point:
    x: float
    y: float


@dataclass(frozen=True)
class Modifiers:
    ctrl: bool = False
    shift: bool = False
    alt: bool = False
    meta: bool = False

    @property
    def active(self) -> bool:
        return self.ctrl or self.shift or self.alt or self.meta


@dataclass(frozen=True)
class ScrollDelta:
    from_x: float
    from_y: float
    to_x: float
    to_y: float

    @property
    def delta_x(self) -> float:
        return self.to_x - self.from_x

    @property
    def delta_y(self) -> float:
        return self.to_y - self.from_y


@dataclass(frozen=True)
class StyleChange:
    property: str
    value: str
    priority: str = ""


@dataclass(frozen=True)
class ExpandParams:
    mode: str = "auto"
    clear_ancestor_constraints: bool = True
    keep_scrollbar: bool = True
    reset_scroll: bool = True


@dataclass(frozen=True)
class ElementMetadata:
    tag_name: str = ""
    role: str = ""
    text: str = ""
    aria_label: str | None = None
    placeholder: str | None = None
    test_id: str | None = None
    href: str | None = None
    src: str | None = None
    input_type: str | None = None
    name: str | None = None


@dataclass(frozen=True)
class Trigger:
    type: TriggerType
    locator: str | None
    locator_fallbacks: tuple[str, ...] = ()
    strategies: tuple[StrategyKind, ...] = ()
    timestamp: float = 0.0
    metadata: ElementMetadata = field(default_factory=ElementMetadata)
    viewport: Viewport = field(default_factory=Viewport)
    # type-specific payload
    coordinates: Point | None = None
    modifiers: Modifiers | None = None
    button: int | None = None
    key: str | None = None
    value: str | None = None
    scroll: ScrollDelta | None = None
    style_change: StyleChange | None = None
    expand_params: ExpandParams | None = None
    style_changes_batch: tuple[StyleChange, ...] = ()
    capture_label: str | None = None
    navigation: bool = False


@dataclass(frozen=True)
class ClassToggle:
    locator: str | None
    added: tuple[str, ...] = ()
    removed: tuple[str, ...] = ()


@dataclass(frozen=True)
class ClassDiff:
    added: tuple[str, ...] = ()
    removed: tuple[str, ...] = ()


@dataclass(frozen=True)
class NewElement:
    locator: str | None
    width: float = 0.0
    height: float = 0.0

    @property
    def area(self) -> float:
        return self.width * self.height


@dataclass(frozen=True)
class Effects:
    class_toggles: tuple[ClassToggle, ...] = ()
    body_class_changes: ClassDiff | None = None
    new_elements: tuple[NewElement, ...] = ()


@dataclass(frozen=True)
class SettlementReport:
    frames_observed: int = 0
    max_layout_shift: float = 0.0
    settle_frame: int | None = None
    stabilized: bool = False
    timed_out: bool = False
    total_ms: float = 0.0
    new_elements: tuple[NewElement, ...] = ()
    max_css_duration_ms: float = 0.0
    forced: bool = False


@dataclass(frozen=True)
class Step:
    step_id: str
    trigger: Trigger
    effects: Effects = field(default_factory=Effects)
    visual_settling: SettlementReport | None = None
    duration_ms: float = 0.0

    @property
    def max_layout_shift(self) -> float:
        return self.visual_settling.max_layout_shift if self.visual_settling else 0.0


def diff_classes(before: str | None, after: str | None) -> ClassDiff | None:
    """Return the classes added and removed between two class attribute values."""
    old = (before or "").split()
    new = (after or "").split()
    added = tuple(c for c in dict.fromkeys(new) if c not in old)
    removed = tuple(c for c in dict.fromkeys(old) if c not in new)
    if not added and not removed:
        return None
    return ClassDiff(added=added, removed=removed)
