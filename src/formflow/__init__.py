"""formflow.

Multi-step form workflows with:
- declarative conditions controlling step and field visibility
- visibility-aware navigation with after-step hooks
- an owned, observable state store
- debounced snapshot persistence behind a pluggable adapter
"""

__version__ = "0.1.0"

from formflow.config import FormflowSettings
from formflow.workflow.builder import WorkflowBuilder
from formflow.workflow.conditions import when
from formflow.workflow.definitions import StepConditions, StepConfig
from formflow.workflow.forms import FieldDefinition, FormDefinition
from formflow.workflow.session import WorkflowSession

__all__ = [
    "__version__",
    "FieldDefinition",
    "FormDefinition",
    "FormflowSettings",
    "StepConditions",
    "StepConfig",
    "WorkflowBuilder",
    "WorkflowSession",
    "when",
]
