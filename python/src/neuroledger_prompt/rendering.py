"""
Render tree used as the output surface for generated dashboard code.

Generated code never sees the RenderContainer itself, only a ContainerHandle
bound to one RenderLease. When an attempt is abandoned (timeout, new code,
teardown) the lease is revoked and every later write through that handle
raises DetachedContainerError, so a render that outlives its attempt cannot
touch the container again.
"""

import html
import re
import threading
from typing import Any, Iterable

_TAG_RE = re.compile(r"^[a-z][a-z0-9-]{0,31}$")
_ATTR_RE = re.compile(r"^[a-z][a-z0-9_:-]{0,63}$")

# Tags that would execute or embed something when the HTML is displayed
BLOCKED_TAGS = frozenset({
    "script", "iframe", "object", "embed", "frame", "frameset",
    "link", "meta", "base", "form", "style",
})

_URL_ATTRS = frozenset({"href", "src", "action", "formaction", "xlink:href"})


class DetachedContainerError(RuntimeError):
    """Raised when code writes to a container whose render attempt has ended."""


def _attr_name(name: str) -> str:
    # `class_` and `data_value` style keywords map to `class` / `data-value`
    name = name.rstrip("_").replace("_", "-").lower()
    if not _ATTR_RE.match(name):
        raise ValueError(f"Invalid attribute name: {name!r}")
    if name.startswith("on"):
        raise ValueError(f"Event handler attributes are not allowed: {name!r}")
    return name


def _attr_value(name: str, value: Any) -> str:
    text = "" if value is None else str(value)
    if name in _URL_ATTRS and text.strip().lower().startswith(("javascript:", "vbscript:", "data:")):
        raise ValueError(f"Unsafe URL in {name!r}")
    return text


class Element:
    """A node of the render tree."""

    def __init__(self, tag: str, text: Any = "", attrs: dict[str, Any] | None = None):
        tag = str(tag).lower()
        if not _TAG_RE.match(tag) or tag in BLOCKED_TAGS:
            raise ValueError(f"Tag not allowed: {tag!r}")
        self.tag = tag
        self.text = "" if text is None else str(text)
        self.attrs: dict[str, str] = {}
        self.children: list["Element"] = []
        for name, value in (attrs or {}).items():
            self.set(name, value)

    def set(self, name: str, value: Any) -> "Element":
        """Set an attribute and return self for chaining."""
        attr = _attr_name(name)
        self.attrs[attr] = _attr_value(attr, value)
        return self

    def append(self, tag: str, text: Any = "", **attrs: Any) -> "Element":
        """Create a child element and return it."""
        child = Element(tag, text, attrs)
        self.children.append(child)
        return child

    def extend(self, tag: str, items: Iterable[Any], **attrs: Any) -> list["Element"]:
        """Append one child per item, each with the item's text."""
        return [self.append(tag, item, **attrs) for item in items]

    def find_all(self, tag: str | None = None, cls: str | None = None) -> list["Element"]:
        """Depth-first search of descendants by tag and/or class."""
        found = []
        for child in self.children:
            tag_ok = tag is None or child.tag == tag
            cls_ok = cls is None or cls in child.attrs.get("class", "").split()
            if tag_ok and cls_ok:
                found.append(child)
            found.extend(child.find_all(tag, cls))
        return found

    def text_content(self) -> str:
        parts = [self.text] if self.text else []
        parts.extend(child.text_content() for child in self.children)
        return " ".join(p for p in parts if p)

    def to_html(self) -> str:
        attrs = "".join(
            f' {name}="{html.escape(value, quote=True)}"' for name, value in self.attrs.items()
        )
        inner = html.escape(self.text) + "".join(child.to_html() for child in self.children)
        return f"<{self.tag}{attrs}>{inner}</{self.tag}>"

    def __repr__(self) -> str:
        return f"Element({self.tag!r}, children={len(self.children)})"


class RenderLease:
    """Write permission for one render attempt."""

    def __init__(self, attempt: int):
        self.attempt = attempt
        self.active = True

    def revoke(self) -> None:
        self.active = False


class RenderContainer(Element):
    """Root of the render tree; owned by exactly one render attempt at a time."""

    def __init__(self, css_class: str = "ai-execution-container"):
        super().__init__("div", attrs={"class": css_class})
        self._lock = threading.RLock()
        self._lease: RenderLease | None = None
        self._attempts = 0

    @property
    def is_empty(self) -> bool:
        return not self.children and not self.text

    def lease(self) -> RenderLease:
        """Revoke the current lease (if any) and hand out a new one."""
        with self._lock:
            if self._lease is not None:
                self._lease.revoke()
            self._attempts += 1
            self._lease = RenderLease(self._attempts)
            return self._lease

    def release(self) -> None:
        """Revoke the current lease without starting a new attempt."""
        with self._lock:
            if self._lease is not None:
                self._lease.revoke()
                self._lease = None

    def clear(self) -> None:
        with self._lock:
            self.children = []
            self.text = ""

    def write(self, lease: RenderLease, func, *args: Any, **kwargs: Any) -> Any:
        """Run a mutation on behalf of `lease`, refusing revoked leases."""
        with self._lock:
            if not lease.active:
                raise DetachedContainerError("This render attempt has ended; the container is no longer writable")
            return func(*args, **kwargs)


class ContainerHandle:
    """The only view of the container that generated code receives."""

    __slots__ = ("_container", "_lease")

    def __init__(self, container: RenderContainer, lease: RenderLease):
        self._container = container
        self._lease = lease

    def append(self, tag: str, text: Any = "", **attrs: Any) -> Element:
        return self._container.write(self._lease, self._container.append, tag, text, **attrs)

    def extend(self, tag: str, items: Iterable[Any], **attrs: Any) -> list[Element]:
        return self._container.write(self._lease, self._container.extend, tag, list(items), **attrs)

    def clear(self) -> None:
        self._container.write(self._lease, self._container.clear)

    def set(self, name: str, value: Any) -> "ContainerHandle":
        self._container.write(self._lease, self._container.set, name, value)
        return self

    @property
    def children(self) -> list[Element]:
        return list(self._container.children)

    @property
    def attached(self) -> bool:
        return self._lease.active


def _insight_text(insight: Any) -> str:
    if isinstance(insight, dict):
        for key in ("text", "content", "description", "title"):
            if insight.get(key):
                return str(insight[key])
        return ", ".join(f"{k}: {v}" for k, v in insight.items())
    return str(insight)


def render_static_fallback(container: Element, fallback: dict[str, Any]) -> Element:
    """
    Render visualizations and insights as read-only cards.

    Uses only the `visualizations` and `insights` already in `fallback` and
    runs no generated code. Returns the fallback root element.
    """
    root = container.append("div", **{"class": "dashboard-fallback"})
    root.append("p", "Showing a summary of the analysis results.", **{"class": "fallback-notice"})

    grid = root.append("div", **{"class": "viz-grid"})
    for index, viz in enumerate(fallback.get("visualizations") or [], 1):
        viz = viz if isinstance(viz, dict) else {"title": str(viz)}
        card = grid.append("div", **{"class": "viz-card", "data-index": index})
        card.append("h3", viz.get("title") or f"Visualization {index}", **{"class": "viz-title"})
        if viz.get("description"):
            card.append("p", viz["description"], **{"class": "viz-description"})
        kind = viz.get("type") or viz.get("chartType") or "chart"
        card.append("div", f"{kind} preview unavailable", **{"class": "viz-placeholder"})

    insights = [_insight_text(i) for i in fallback.get("insights") or []]
    if insights:
        section = root.append("div", **{"class": "insights"})
        section.append("h3", "Key insights")
        section.append("ul").extend("li", insights)

    return root
