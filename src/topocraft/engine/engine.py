"""Main topology engine - orchestrates plan, apply and destroy.

Provides a single entry point for:
1. Reading observed state from the provider
2. Building the dependency-ordered plan
3. Executing it with partial-failure accounting
"""
import logging
from typing import TYPE_CHECKING, Optional

from ..config.settings import EngineSettings
from ..errors import ValidationError
from ..utils.audit_log import setup_audit_logging
from .executor import PlanExecutor
from .planner import PlanBuilder, summarize_plan
from .schema import ApplyResult, DesiredState, Plan, Resource, ValidationResult
from .validator import ResourceValidator

if TYPE_CHECKING:
    from ..providers.base import Provider

logger = logging.getLogger(__name__)


class TopologyEngine:
    """
    Plan and apply desired state through one provider.

    Usage:
        async with InMemoryProvider() as provider:
            engine = TopologyEngine(provider)
            result = await engine.apply(desired)
    """

    def __init__(self, provider: "Provider", settings: Optional[EngineSettings] = None):
        """
        Initialize the engine.

        Args:
            provider: Connected provider, scoped to this invocation
            settings: Engine settings (defaults when omitted)
        """
        self.provider = provider
        self.settings = settings or EngineSettings()
        self.builder = PlanBuilder(replace_on_conflict=self.settings.replace_on_conflict)
        self._executor: Optional[PlanExecutor] = None

        if self.settings.audit_log:
            setup_audit_logging(self.settings.audit_log)

    async def observe(self) -> list[Resource]:
        """Everything the provider currently reports."""
        observed = await self.provider.describe_all()
        logger.info(f"Observed {len(observed)} provisioned resources")
        return observed

    def validate(self, desired: DesiredState) -> ValidationResult:
        """
        Check the desired state before anything is observed.

        Raises:
            ValidationError: Listing every problem found
        """
        validation = ResourceValidator().validate(desired)
        if not validation.valid:
            raise ValidationError(
                f"Validation failed: {'; '.join(validation.errors)}",
                errors=validation.errors,
            )
        for warning in validation.warnings:
            logger.warning(warning)
        return validation

    async def plan(self, desired: DesiredState) -> Plan:
        """Calculate the plan for a DesiredState."""
        self.validate(desired)
        observed = await self.observe()
        plan = self.builder.build(desired, observed)
        logger.info(f"Planned {len(plan)} operations")
        return plan

    async def apply(self, desired: DesiredState, dry_run: bool = False) -> ApplyResult:
        """
        Apply a desired state.

        Planning errors (validation, cycle, conflict) propagate before any
        remote call. Provider errors are reported per operation.
        """
        plan = await self.plan(desired)
        if plan.no_change:
            logger.info("No changes needed - state already matches")
        return await self.execute(plan, dry_run=dry_run)

    async def destroy(self, desired: DesiredState, dry_run: bool = False) -> ApplyResult:
        """Delete the declared resources that exist, dependents first."""
        declared = {r.key for r in desired}
        observed = [r for r in await self.observe() if r.key in declared]
        plan = self.builder.build([], observed)
        logger.info(f"Destroying {len(plan)} resources")
        return await self.execute(plan, dry_run=dry_run)

    async def execute(self, plan: Plan, dry_run: bool = False) -> ApplyResult:
        """Run an already built plan."""
        self._executor = PlanExecutor(self.settings)
        try:
            return await self._executor.apply(plan, self.provider, dry_run=dry_run)
        finally:
            self._executor = None

    def cancel(self) -> None:
        """Cancel the apply in progress, if any."""
        if self._executor is not None:
            self._executor.cancel()

    async def preview(self, desired: DesiredState) -> str:
        """
        Preview changes without applying.

        Returns human-readable plan summary.
        """
        validation = self.validate(desired)
        plan = self.builder.build(desired, await self.observe())
        summary = summarize_plan(plan)

        if validation.warnings:
            summary += "\n\nWarnings:\n" + "\n".join(
                f"  - {w}" for w in validation.warnings
            )
        return summary
