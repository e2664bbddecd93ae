"""Fixed participation framework: lifecycle stages, categories, methods and
the default checklist template seeded into new projects.

The framework is static. Stored categories (``Category`` rows) are a separate,
user-extensible list; ``FRAMEWORK_CATEGORY_NAMES`` ties the two together for
items created on demand from the stage view.
"""
from __future__ import annotations

import re
from dataclasses import dataclass


@dataclass(frozen=True)
class Stage:
    id: int
    name: str

    @property
    def label(self) -> str:
        return f"Stage {self.id}"


@dataclass(frozen=True)
class Method:
    key: str
    name: str
    category_number: int

    @property
    def code(self) -> str:
        return f"{self.category_number}{self.key}"

    @property
    def title(self) -> str:
        return method_title(self.key, self.name)


@dataclass(frozen=True)
class ParticipationCategory:
    number: int
    title: str
    subtitle: str
    methods: tuple[Method, ...]

    def method(self, key: str) -> Method | None:
        return next((m for m in self.methods if m.key == key), None)


LIFECYCLE_STAGES: tuple[Stage, ...] = (
    Stage(1, "INITIATION & USER REQUIREMENTS"),
    Stage(2, "BRIEFING AND SITE SURVEY"),
    Stage(3, "SCHEMATIC AND PRODUCT DESIGN"),
    Stage(4, "PRODUCT INFORMATION AND WORKING DRAWINGS (Detail Design)"),
    Stage(5, "ASSEMBLY, PRODUCTION AND CONSTRUCTION"),
    Stage(6, "CONSUMPTION AND IMPLEMENTATION"),
)


def _category(number: int, title: str, subtitle: str, methods: list[tuple[str, str]]) -> ParticipationCategory:
    return ParticipationCategory(
        number=number, title=title, subtitle=subtitle,
        methods=tuple(Method(key, name, number) for key, name in methods),
    )


PARTICIPATION_CATEGORIES: tuple[ParticipationCategory, ...] = (
    _category(
        1, "PARTICIPATORY NEEDS ASSESSMENT AND PROGRAMMING",
        "Emphasizes early and continuous engagement with actors to inform spatial decision-making",
        [("A", "Problem-Tree Analysis"), ("B", "Surveys & Interviews"),
         ("C", "Focus Group Discussions"), ("D", "Participatory Mapping")],
    ),
    _category(
        2, "COLLABORATIVE DESIGN AND CO-CREATION WORKSHOPS",
        "Redistribute power within the design process by creating conditions for meaningful participation",
        [("A", "Charrettes"), ("B", "Scenario-Building Exercises"), ("C", "Model-Making Activities")],
    ),
    _category(
        3, "ITERATIVE FEEDBACK LOOPS AND SYSTEMATIC DOCUMENTATION",
        "Recording community inputs, design decisions, and subsequent revisions, and clearly "
        "communicating how participant contributions influence the evolving project",
        [("A", "Public Exhibition")],
    ),
    _category(
        4, "DIGITAL PARTICIPATORY PLATFORMS",
        "Creates continuous and flexible engagement across time and space",
        [("A", "Web-based Portals"), ("B", "Interactive Mapping Tools"), ("C", "Online Forums"),
         ("D", "Mobile Applications"), ("E", "Immersive Virtual Reality-Based Workshops")],
    ),
)

ALL_METHODS: tuple[Method, ...] = tuple(m for c in PARTICIPATION_CATEGORIES for m in c.methods)
METHOD_KEYS = frozenset(m.key for m in ALL_METHODS)

# Framework category number -> stored category name. Categories 2 and 3 both
# live under PROGRAMMING in existing databases.
FRAMEWORK_CATEGORY_NAMES: dict[int, str] = {
    1: "GOAL SETTING",
    2: "PROGRAMMING",
    3: "PROGRAMMING",
    4: "CO-PRODUCTION",
}

DIGITAL_CATEGORY_NUMBER = 4

ITEM_TYPES = ("analog", "digital")

# Seeded into an empty database, in sort order.
DEFAULT_CATEGORIES: tuple[str, ...] = ("GOAL SETTING", "PROGRAMMING", "CO-PRODUCTION", "IMPLEMENTATION")

DEFAULT_CHECKLIST_ITEMS: dict[str, dict[str, list[str]]] = {
    "GOAL SETTING": {
        "analog": [
            "Problem framing/situation analysis",
            "Community needs inventory",
            "Draft broad goals (visioning)",
            "Define measurable objectives & evaluation metrics",
            "Stakeholder validation & prioritization",
        ],
        "digital": [
            "Representative stakeholder identification & early inclusion",
            "Baseline geospatial & socio-economic data readiness",
            "Policy/decision-making alignment",
            "Privacy, legal & ethical constraints assessment",
        ],
    },
    "PROGRAMMING": {
        "analog": [
            "Detailed needs & site analysis",
            "Generate alternative program scenarios",
            "Technical/financial constraints & feasibility",
            "Define roles, tasks & timelines",
        ],
        "digital": [
            "Technical readiness & interoperability planning",
            "Digital inclusion & capacity building plan",
            "Data governance setup (metadata, stewardship)",
            "Monitoring indicators (geospatial M&E)",
        ],
    },
    "CO-PRODUCTION": {
        "analog": [
            "Design engagement plan",
            "Facilitated workshops / charrettes (iterative)",
            "Visualization & prototyping",
            "Consensus building, negotiation & conflict management",
            "Documenting inputs & feedback loops",
        ],
        "digital": [
            "Usability & user centered interface",
            "Incorporation of local knowledge into geodata",
            "Real, visible feedback loops",
            "Moderation, facilitation & technical support during sessions",
            "Transparency & legitimacy of data handling",
        ],
    },
    "IMPLEMENTATION": {
        "analog": [
            "Phase definition & scheduling",
            "Facilitated workshops / charrettes (iterative)",
            "Procurement & contracting aligned with community goals",
            "On-site supervision with community oversight",
            "Monitoring, evaluation & adaptive adjustments",
            "Handover, maintenance & sustainability arrangements",
        ],
        "digital": [
            "Integration of DPP outputs into formal decision",
            "Sustainability & funding for platforms",
            "Geospatial M&E & live updating",
            "Governance, accountability & open reporting",
        ],
    },
}

_TITLE_KEY_RE = re.compile(r"\(([A-E])\)")


def method_title(key: str, name: str) -> str:
    return f"({key}) {name}"


def title_method_key(title: str | None) -> str | None:
    """Return the first ``(X)`` method marker in a title, or None."""
    m = _TITLE_KEY_RE.search(title or "")
    return m.group(1) if m else None


def get_stage(stage_id: int) -> Stage | None:
    return next((s for s in LIFECYCLE_STAGES if s.id == stage_id), None)


def get_category(number: int) -> ParticipationCategory | None:
    return next((c for c in PARTICIPATION_CATEGORIES if c.number == number), None)


def item_type_for(category_number: int) -> str:
    return "digital" if category_number == DIGITAL_CATEGORY_NUMBER else "analog"


def framework_overview() -> dict:
    """Serializable view of the whole framework for clients."""
    return {
        "stages": [{"id": s.id, "name": s.name, "label": s.label} for s in LIFECYCLE_STAGES],
        "categories": [
            {
                "number": c.number, "title": c.title, "subtitle": c.subtitle,
                "stored_category": FRAMEWORK_CATEGORY_NAMES[c.number],
                "methods": [{"key": m.key, "name": m.name, "code": m.code} for m in c.methods],
            }
            for c in PARTICIPATION_CATEGORIES
        ],
        "total_methods": len(ALL_METHODS),
    }
