#!/usr/bin/env python3
"""Programmatic workflow example.

This walks a three-step signup workflow from start to submission:

* load settings from `.env`
* build a workflow whose billing step only appears for business accounts
* persist progress as JSON snapshots under `FORMFLOW_STATE_PATH`

Run it twice with `--stop-after 1` to see a saved session being resumed.
"""

from __future__ import annotations

import argparse
import asyncio
import json
from typing import Any, Sequence

from formflow.config import FormflowSettings
from formflow.logging import configure_logging
from formflow.workflow.builder import WorkflowBuilder
from formflow.workflow.conditions import when
from formflow.workflow.definitions import StepConditions, StepConfig, WorkflowDefinition
from formflow.workflow.forms import (
    FieldDefinition,
    FormDefinition,
    ValidationError,
    ValidationResult,
)
from formflow.workflow.navigation import StepContext
from formflow.workflow.plugins import AnalyticsLoggingPlugin
from formflow.workflow.session import WorkflowSession


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a signup workflow (programmatic example).")
    parser.add_argument("--email", required=True, help="Email entered on the account step")
    parser.add_argument(
        "--kind",
        choices=("personal", "business"),
        default="personal",
        help="Account kind; business accounts get a billing step",
    )
    parser.add_argument(
        "--stop-after",
        type=int,
        default=None,
        help="Stop after this many steps, leaving the session saved (optional)",
    )
    return parser.parse_args(argv)


def _require_email(data: Any) -> ValidationResult:
    if "@" in str(data.get("email", "")):
        return ValidationResult.ok()
    return ValidationResult.failed(ValidationError("Enter a valid email", field="email"))


def _suggest_company(ctx: StepContext) -> None:
    domain = str(ctx.data.get("email", "")).partition("@")[2]
    if domain:
        ctx.next.prefill({"company": domain.split(".")[0].title()})


def build_workflow() -> WorkflowDefinition:
    forms = [
        FormDefinition(
            ref="account",
            fields=(FieldDefinition("email"), FieldDefinition("kind")),
            validator=_require_email,
        ),
        FormDefinition(ref="billing", fields=(FieldDefinition("company"),)),
        FormDefinition(ref="confirm", fields=(FieldDefinition("terms"),)),
    ]
    return (
        WorkflowBuilder("signup", "Signup", forms=forms)
        .add_step(
            [
                StepConfig(
                    id="account",
                    title="Account",
                    form_ref="account",
                    after_hook=_suggest_company,
                ),
                StepConfig(
                    id="billing",
                    title="Billing",
                    form_ref="billing",
                    conditions=StepConditions(visible=when("account.kind").equals("business")),
                ),
                StepConfig(id="confirm", title="Confirm", form_ref="confirm"),
            ]
        )
        .use(AnalyticsLoggingPlugin())
        .build()
    )


async def run(args: argparse.Namespace, settings: FormflowSettings) -> int:
    async def on_complete(data: dict[str, dict[str, Any]]) -> None:
        print(json.dumps(data, indent=2))

    session = WorkflowSession.from_settings(build_workflow(), settings, on_complete=on_complete)
    async with session:
        print(f"Starting at step: {session.current_step.title}")
        if session.current_step.id == "account":
            session.set_value("email", args.email)
            session.set_value("kind", args.kind)

        moves = 0
        while not session.navigation.is_last_step():
            if args.stop_after is not None and moves >= args.stop_after:
                assert session.persistence is not None
                await session.persistence.save_now()
                print(f"Saved progress under key {session.persistence.key!r}")
                return 0
            result = await session.go_next()
            if not result.ok:
                for error in result.errors:
                    print(f"{error.field}: {error.message}")
                return 1
            moves += 1
            print(f"Now at step: {session.current_step.title}")

        session.set_value("terms", True)
        if not await session.submit():
            print("Submission was rejected")
            return 1
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    settings = FormflowSettings()
    configure_logging(settings.log_level)

    return asyncio.run(run(args, settings))


if __name__ == "__main__":
    raise SystemExit(main())
