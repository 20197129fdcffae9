"""Exception hierarchy shared by the workflow engine and persistence layer."""

from __future__ import annotations


class FormflowError(Exception):
    """Base class for errors raised by formflow."""


class ConditionError(FormflowError, ValueError):
    """A condition tree was built with an invalid operator/value combination."""


class StateStoreError(FormflowError, ValueError):
    """A store action was rejected; the state is left unchanged."""


class PluginInstallError(FormflowError):
    pass


class WorkflowBuildError(FormflowError):
    """Raised by ``WorkflowBuilder.build()`` with every validation problem found."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__("Workflow validation failed: " + "; ".join(self.errors))
