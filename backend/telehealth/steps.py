"""
Step runner for soft-failing side effects.

A pipeline is an ordered list of named Steps sharing one context dict.
Each step's return value is stored in the context under its name so later
steps can read it. A failing step appends a warning and the runner moves on;
a step marked critical re-raises instead.

    runner = StepRunner(label='INTAKE abc123')
    ctx = runner.run_all(steps, ctx={'patient': patient})
    runner.warnings  # [{'code': 'PDF_GENERATION_FAILED', 'step': 'pdf', 'message': '...'}]
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from django.db import transaction

logger = logging.getLogger(__name__)


@dataclass
class Step:
    name: str
    func: Callable[[dict], Any]
    code: str                                        # warning code on failure
    critical: bool = False
    condition: Optional[Callable[[dict], bool]] = None
    message: str = ''                                # warning message prefix


class StepRunner:

    def __init__(self, label: str = ''):
        self.label = label
        self.warnings: list[dict] = []

    def warn(self, step: str, code: str, message: str) -> None:
        self.warnings.append({'code': code, 'step': step, 'message': message})

    def run(self, step: Step, ctx: dict) -> Any:
        if step.condition is not None and not step.condition(ctx):
            logger.info('[%s] step %s skipped', self.label, step.name)
            ctx[step.name] = None
            return None

        if step.critical:
            ctx[step.name] = step.func(ctx)
            return ctx[step.name]

        try:
            # savepoint so a failed soft write cannot poison an enclosing transaction
            with transaction.atomic():
                result = step.func(ctx)
        except Exception as exc:
            logger.warning('[%s] step %s failed: %s', self.label, step.name, exc)
            prefix = step.message or f'{step.name} failed'
            self.warn(step.name, step.code, f'{prefix}: {exc}')
            result = None

        ctx[step.name] = result
        return result

    def run_all(self, steps: list[Step], ctx: Optional[dict] = None) -> dict:
        ctx = {} if ctx is None else ctx
        for step in steps:
            self.run(step, ctx)
        return ctx
