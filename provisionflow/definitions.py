"""Registration and lookup of validated workflow definitions."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from .contracts import WorkflowDefinition
from .errors import UnknownWorkflowError, ValidationError
from .validation import validate

logger = logging.getLogger(__name__)


class DefinitionRegistry:
    """Holds definitions that passed validation.

    Validation runs once, in :meth:`register`; a definition that fails it is
    never stored, so the engine only ever sees accepted graphs.
    """

    def __init__(self, definitions: Iterable[WorkflowDefinition] = ()) -> None:
        self._definitions: Dict[str, WorkflowDefinition] = {}
        for definition in definitions:
            self.register(definition)

    def register(self, definition: WorkflowDefinition) -> WorkflowDefinition:
        """Validate and store ``definition``.

        Raises:
            ValidationError: If the definition has any violations.
        """
        violations = validate(definition)
        if violations:
            logger.error(
                f"Rejected workflow {definition.id}: {len(violations)} violation(s)"
            )
            raise ValidationError(definition.id, violations)

        if definition.id in self._definitions:
            logger.warning(f"Replacing registered workflow {definition.id}")
        self._definitions[definition.id] = definition
        logger.info(
            f"Registered workflow {definition.id} ({len(definition.steps)} steps)"
        )
        return definition

    def get(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        return self._definitions.get(workflow_id)

    def resolve(self, key: str) -> WorkflowDefinition:
        """Find a definition by id, falling back to its template type."""
        definition = self._definitions.get(key)
        if definition is not None:
            return definition
        for candidate in self._definitions.values():
            if candidate.template_type == key:
                return candidate
        raise UnknownWorkflowError(key)

    def list(self) -> List[WorkflowDefinition]:
        return list(self._definitions.values())

    def __contains__(self, workflow_id: object) -> bool:
        return workflow_id in self._definitions

    def __len__(self) -> int:
        return len(self._definitions)
