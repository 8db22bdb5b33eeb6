"""UNIFORMAT II component classification.

Codes form a tree: major group (level 1, e.g. ``D``), group (level 2,
``D30``), individual element (level 3, ``D3040``) and sub-element (level 4).
"""

from fci_engine.errors import ClassificationError
from fci_engine.models.schemas import Component

UNIFORMAT_LEVEL_1 = {
    "A": "Substructure",
    "B": "Shell",
    "C": "Interiors",
    "D": "Services",
    "E": "Equipment & Furnishings",
    "F": "Special Construction & Demolition",
    "G": "Building Sitework",
}

UNIFORMAT_LEVEL_2 = {
    "A10": "Foundations",
    "A20": "Basement Construction",
    "B10": "Superstructure",
    "B20": "Exterior Enclosure",
    "B30": "Roofing",
    "C10": "Interior Construction",
    "C20": "Stairs",
    "C30": "Interior Finishes",
    "D10": "Conveying",
    "D20": "Plumbing",
    "D30": "HVAC",
    "D40": "Fire Protection",
    "D50": "Electrical",
    "E10": "Equipment",
    "E20": "Furnishings",
    "F10": "Special Construction",
    "F20": "Selective Building Demolition",
    "G10": "Site Preparation",
    "G20": "Site Improvements",
    "G30": "Site Civil / Mechanical Utilities",
    "G40": "Site Electrical Utilities",
    "G90": "Other Site Construction",
}


class ComponentRegistry:
    """Registry of classified components for one classification scheme."""

    def __init__(self, components: list[Component] | None = None):
        self._components: dict[str, Component] = {}
        for component in components or []:
            self.register(component)

    @classmethod
    def uniformat(cls) -> "ComponentRegistry":
        """Registry seeded with the standard UNIFORMAT II level 1 and 2 codes."""
        registry = cls()
        for code, name in UNIFORMAT_LEVEL_1.items():
            registry.register(Component(code=code, name=name, level=1))
        for code, name in UNIFORMAT_LEVEL_2.items():
            registry.register(
                Component(code=code, name=name, level=2, parent_code=code[0])
            )
        return registry

    def __contains__(self, code: str) -> bool:
        return code in self._components

    def __len__(self) -> int:
        return len(self._components)

    def get(self, code: str) -> Component | None:
        return self._components.get(code)

    def register(self, component: Component) -> Component:
        """Add a component after checking uniqueness and parentage.

        Raises:
            ClassificationError: duplicate code, missing parent, parent at the
                wrong level, or a custom component shadowing a standard code.
        """
        existing = self._components.get(component.code)
        if existing is not None:
            if component.is_custom and not existing.is_custom:
                raise ClassificationError(
                    f"Custom component '{component.code}' collides with the standard scheme",
                    field="code",
                    value=component.code,
                )
            raise ClassificationError(
                f"Component code '{component.code}' is already registered",
                field="code",
                value=component.code,
            )

        if component.level == 1:
            if component.parent_code is not None:
                raise ClassificationError(
                    f"Level 1 component '{component.code}' cannot have a parent",
                    field="parent_code",
                    value=component.parent_code,
                )
        else:
            parent = self._components.get(component.parent_code or "")
            if parent is None:
                raise ClassificationError(
                    f"Parent '{component.parent_code}' of '{component.code}' is not registered",
                    field="parent_code",
                    value=component.parent_code,
                )
            if parent.level != component.level - 1:
                raise ClassificationError(
                    f"Parent '{parent.code}' is level {parent.level}; "
                    f"'{component.code}' at level {component.level} needs a level "
                    f"{component.level - 1} parent",
                    field="parent_code",
                    value=component.parent_code,
                )

        self._components[component.code] = component
        return component

    def ancestors(self, code: str) -> list[str]:
        """Codes from the level 1 root down to ``code`` itself."""
        chain = []
        current = self._components.get(code)
        if current is None:
            return [code[:1], code] if len(code) > 1 else [code]
        while current is not None:
            chain.append(current.code)
            current = self._components.get(current.parent_code or "")
        return list(reversed(chain))

    def system_code(self, code: str) -> str:
        """Level 1 classification code used to group components into systems."""
        return self.ancestors(code)[0]

    def children(self, code: str) -> list[Component]:
        return sorted(
            (c for c in self._components.values() if c.parent_code == code),
            key=lambda c: c.code,
        )
