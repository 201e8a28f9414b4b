"""Built-in project provisioning workflows."""

from __future__ import annotations

from typing import List

from .contracts import ParallelGroup, RollbackStep, WorkflowDefinition, WorkflowStep
from .definitions import DefinitionRegistry

STANDARD_PHASES = (
    "initialization",
    "authentication",
    "azure_devops",
    "power_platform",
    "integration",
    "validation",
    "completion",
)

_STANDARD_STEPS = (
    WorkflowStep(
        id="init-001",
        name="Validate Template",
        description="Validate project template and parameters",
        type="validation",
        phase="initialization",
        timeout_ms=30_000,
        retry_attempts=1,
        configuration={"validationType": "template"},
    ),
    WorkflowStep(
        id="init-002",
        name="Initialize Workflow Variables",
        description="Set up workflow execution variables",
        type="validation",
        phase="initialization",
        dependencies=("init-001",),
        timeout_ms=10_000,
        retry_attempts=1,
        configuration={"variables": ["projectName", "templateName", "region"]},
    ),
    WorkflowStep(
        id="auth-001",
        name="Create Directory Application",
        description="Register the project application in the identity directory",
        type="app_registration",
        phase="authentication",
        dependencies=("init-002",),
        timeout_ms=60_000,
        retry_attempts=3,
        configuration={"permissions": ["dynamics", "power-platform"], "createSecret": True},
    ),
    WorkflowStep(
        id="ado-001",
        name="Create DevOps Project",
        description="Create or configure the work-tracking project",
        type="azure_project_creation",
        phase="azure_devops",
        dependencies=("auth-001",),
        parallel=True,
        timeout_ms=120_000,
        retry_attempts=2,
        configuration={"processTemplate": "Agile", "visibility": "private"},
    ),
    WorkflowStep(
        id="ado-002",
        name="Create Work Items",
        description="Create work item hierarchy from template",
        type="work_item_creation",
        phase="azure_devops",
        dependencies=("ado-001",),
        timeout_ms=300_000,
        retry_attempts=2,
        configuration={"batchSize": 5, "validateCreation": True},
    ),
    WorkflowStep(
        id="ado-003",
        name="Setup Repository",
        description="Initialize Git repository and branching policies",
        type="repository_setup",
        phase="azure_devops",
        dependencies=("ado-001",),
        parallel=True,
        required=False,
        timeout_ms=180_000,
        retry_attempts=2,
        configuration={"initializeWithReadme": True, "branchPolicies": ["main"]},
    ),
    WorkflowStep(
        id="ado-004",
        name="Create Build Pipelines",
        description="Set up CI/CD pipelines",
        type="pipeline_creation",
        phase="azure_devops",
        dependencies=("ado-003",),
        required=False,
        timeout_ms=120_000,
        retry_attempts=2,
        configuration={"pipelineTemplates": ["ci-power-platform"]},
    ),
    WorkflowStep(
        id="pp-001",
        name="Create Environments",
        description="Create low-code platform environments",
        type="environment_creation",
        phase="power_platform",
        dependencies=("auth-001",),
        parallel=True,
        timeout_ms=600_000,
        retry_attempts=2,
        configuration={"waitForProvisioning": True, "maxConcurrent": 2},
    ),
    WorkflowStep(
        id="pp-002",
        name="Create Publisher",
        description="Create solution publisher",
        type="publisher_creation",
        phase="power_platform",
        dependencies=("pp-001",),
        timeout_ms=60_000,
        retry_attempts=3,
        configuration={"prefix": "auto"},
    ),
    WorkflowStep(
        id="pp-003",
        name="Create Solutions",
        description="Create and configure solutions",
        type="solution_creation",
        phase="power_platform",
        dependencies=("pp-002",),
        timeout_ms=180_000,
        retry_attempts=2,
        configuration={"addRequiredComponents": True},
    ),
    WorkflowStep(
        id="int-001",
        name="Configure Service Principal Permissions",
        description="Assign permissions to service principal",
        type="permission_assignment",
        phase="integration",
        dependencies=("pp-001", "auth-001"),
        timeout_ms=120_000,
        retry_attempts=3,
        configuration={"permissions": ["system-administrator"]},
    ),
    WorkflowStep(
        id="val-001",
        name="Validate Project Setup",
        description="Validate complete project configuration",
        type="validation",
        phase="validation",
        dependencies=("ado-002", "pp-003", "int-001"),
        timeout_ms=120_000,
        retry_attempts=1,
        configuration={"checks": ["connectivity", "permissions", "components"]},
    ),
    WorkflowStep(
        id="comp-001",
        name="Send Completion Notification",
        description="Send project creation completion notification",
        type="notification",
        phase="completion",
        dependencies=("val-001",),
        required=False,
        timeout_ms=30_000,
        retry_attempts=2,
        configuration={"notificationTypes": ["email", "teams"]},
    ),
)

_STANDARD_GROUPS = (
    ParallelGroup(
        group_id="initial-parallel",
        step_ids=("ado-001", "pp-001"),
        max_concurrency=2,
        fail_fast=True,
    ),
    ParallelGroup(
        group_id="azure-devops-parallel",
        step_ids=("ado-003", "ado-002"),
        max_concurrency=2,
        fail_fast=False,
    ),
)

_STANDARD_ROLLBACKS = (
    RollbackStep(step_id="auth-001", rollback_actions=("delete-application",)),
    RollbackStep(step_id="pp-001", rollback_actions=("delete-environments",)),
)

STANDARD_PROJECT_WORKFLOW = WorkflowDefinition(
    id="standard-project-v1",
    name="Standard Project Workflow",
    description="Provision a platform project with work-tracking integration",
    version="1.0.0",
    template_type="standard-project",
    phases=STANDARD_PHASES,
    steps=_STANDARD_STEPS,
    parallel_groups=_STANDARD_GROUPS,
    rollback_steps=_STANDARD_ROLLBACKS,
)

ENTERPRISE_PROJECT_WORKFLOW = WorkflowDefinition(
    id="enterprise-project-v1",
    name="Enterprise Project Workflow",
    description="Standard workflow plus security and compliance review",
    version="1.0.0",
    template_type="enterprise-project",
    phases=STANDARD_PHASES,
    steps=_STANDARD_STEPS
    + (
        WorkflowStep(
            id="sec-001",
            name="Security Review",
            description="Perform security and compliance review",
            type="validation",
            phase="validation",
            dependencies=("val-001",),
            timeout_ms=300_000,
            retry_attempts=1,
            configuration={
                "checks": ["security-policies", "data-classification", "access-controls"]
            },
        ),
        WorkflowStep(
            id="sec-002",
            name="Compliance Validation",
            description="Validate compliance with enterprise policies",
            type="validation",
            phase="validation",
            dependencies=("sec-001",),
            timeout_ms=180_000,
            retry_attempts=1,
            configuration={"policies": ["gdpr", "sox", "hipaa"]},
        ),
    ),
    parallel_groups=_STANDARD_GROUPS,
    rollback_steps=_STANDARD_ROLLBACKS,
)

QUICKSTART_WORKFLOW = WorkflowDefinition(
    id="quickstart-v1",
    name="Quick Start Workflow",
    description="Minimal workflow for rapid project setup",
    version="1.0.0",
    template_type="quickstart",
    phases=("initialization", "authentication", "power_platform", "completion"),
    steps=(
        WorkflowStep(
            id="qs-001",
            name="Quick Template Validation",
            description="Basic template validation",
            type="validation",
            phase="initialization",
            timeout_ms=15_000,
            retry_attempts=1,
            configuration={"validationType": "basic"},
        ),
        WorkflowStep(
            id="qs-002",
            name="Create Service Principal",
            description="Create basic service principal",
            type="app_registration",
            phase="authentication",
            dependencies=("qs-001",),
            timeout_ms=30_000,
            retry_attempts=2,
            configuration={"permissions": ["dynamics"], "createSecret": True},
        ),
        WorkflowStep(
            id="qs-003",
            name="Create Single Environment",
            description="Create development environment",
            type="environment_creation",
            phase="power_platform",
            dependencies=("qs-002",),
            timeout_ms=300_000,
            retry_attempts=2,
            configuration={"environmentType": "development", "waitForProvisioning": False},
        ),
    ),
    rollback_steps=(
        RollbackStep(step_id="qs-002", rollback_actions=("delete-application",)),
    ),
)


def builtin_definitions() -> List[WorkflowDefinition]:
    return [STANDARD_PROJECT_WORKFLOW, ENTERPRISE_PROJECT_WORKFLOW, QUICKSTART_WORKFLOW]


def default_definitions() -> DefinitionRegistry:
    """Registry pre-loaded with the built-in workflows."""
    return DefinitionRegistry(builtin_definitions())
