"""
Data Acquisition Policy — which evidence sources may influence inference.

The policy is configuration, not engine internals: the map inference engine
takes an AcquisitionPolicy and asks two pure questions of it.

Behavioral Contract:
- is_source_allowed(mode, source) and requires_confirmation(mode, source)
  never raise; unknown modes and sources are simply not allowed.
- assert_source_allowed() is the only raising entry point. It raises
  AcquisitionPolicyError carrying {code, mode, source}; callers surface it
  as a user-facing rejection and do not retry.
- A rule may carry temporal authority (PolicyActivation). A scheduled rule
  only admits its source while its cron expression matches the current time.
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Iterable, List, Optional

from croniter import croniter
from pydantic import BaseModel

from comms_kernel.models.inference import AcquisitionMode, EvidenceSource

logger = logging.getLogger(__name__)

DEFAULT_ACQUISITION_MODE = AcquisitionMode.MANUAL_ONLY

ACQ_SOURCE_BLOCKED = "ACQ_SOURCE_BLOCKED"
ACQ_CONFIRMATION_REQUIRED = "ACQ_CONFIRMATION_REQUIRED"


class AcquisitionPolicyError(Exception):
    """Raised when evidence is submitted from a source the mode does not admit."""

    def __init__(self, code: str, mode: str, source: str):
        self.code = code
        self.mode = mode
        self.source = source
        super().__init__(f"{code}: source {source} rejected under mode {mode}")

    def to_dict(self) -> dict:
        return {"code": self.code, "mode": self.mode, "source": self.source}


class PolicyActivation(BaseModel):
    """Temporal authority: when this rule is active."""

    always: bool = True
    schedule: Optional[str] = None          # Cron expression


class AcquisitionRule(BaseModel):
    source: EvidenceSource
    requires_confirmation: bool = False
    activation: PolicyActivation = PolicyActivation()


def _is_rule_active(rule: AcquisitionRule, current_time: datetime) -> bool:
    """Determine if a rule is active based on temporal authority."""
    activation = rule.activation
    if activation.always:
        return True
    if activation.schedule:
        try:
            return bool(croniter.match(activation.schedule, current_time))
        except (ValueError, KeyError):
            # Invalid cron expression: rule is inactive
            logger.warning("Invalid acquisition schedule %r for %s", activation.schedule, rule.source.value)
            return False
    return False


def _token(value) -> str:
    if isinstance(value, Enum):
        value = value.value
    return str(value or "").strip().upper()


def coerce_acquisition_mode(mode) -> Optional[AcquisitionMode]:
    try:
        return AcquisitionMode(_token(mode))
    except ValueError:
        return None


def _coerce_source(source) -> Optional[EvidenceSource]:
    try:
        return EvidenceSource(_token(source))
    except ValueError:
        return None


_MANUAL_RULES = [
    AcquisitionRule(source=EvidenceSource.OPERATOR_FORM),
    AcquisitionRule(source=EvidenceSource.COMMAND_CONSOLE),
    AcquisitionRule(source=EvidenceSource.CQB_EVENT),
]

DEFAULT_RULES: Dict[AcquisitionMode, List[AcquisitionRule]] = {
    AcquisitionMode.MANUAL_ONLY: list(_MANUAL_RULES),
    AcquisitionMode.PTT_CONFIRMED: _MANUAL_RULES + [
        AcquisitionRule(source=EvidenceSource.VOICE_PTT_CONFIRMED, requires_confirmation=True),
    ],
    AcquisitionMode.ASSISTED: _MANUAL_RULES + [
        AcquisitionRule(source=EvidenceSource.VOICE_PTT_CONFIRMED),
        AcquisitionRule(source=EvidenceSource.VOICE_TRANSCRIPT),
        AcquisitionRule(source=EvidenceSource.AI_INFERENCE),
    ],
}


class AcquisitionPolicy:
    """
    Rule table of admitted evidence sources per acquisition mode.

    Swap the table to change what counts as trusted evidence; scoring code
    does not change.
    """

    def __init__(self, rules: Optional[Dict[AcquisitionMode, Iterable[AcquisitionRule]]] = None):
        source_rules = rules if rules is not None else DEFAULT_RULES
        self._rules: Dict[AcquisitionMode, Dict[EvidenceSource, AcquisitionRule]] = {
            AcquisitionMode(mode): {rule.source: rule for rule in mode_rules}
            for mode, mode_rules in source_rules.items()
        }

    def _rule(self, mode, source) -> Optional[AcquisitionRule]:
        resolved_mode = coerce_acquisition_mode(mode)
        resolved_source = _coerce_source(source)
        if resolved_mode is None or resolved_source is None:
            return None
        return self._rules.get(resolved_mode, {}).get(resolved_source)

    def allowed_sources(self, mode) -> List[EvidenceSource]:
        resolved = coerce_acquisition_mode(mode)
        if resolved is None:
            return []
        return list(self._rules.get(resolved, {}).keys())

    def is_source_allowed(self, mode, source, current_time: Optional[datetime] = None) -> bool:
        rule = self._rule(mode, source)
        if rule is None:
            return False
        if current_time is None:
            current_time = datetime.now(timezone.utc)
        return _is_rule_active(rule, current_time)

    def requires_confirmation(self, mode, source) -> bool:
        rule = self._rule(mode, source)
        return bool(rule and rule.requires_confirmation)

    def assert_source_allowed(
        self,
        mode,
        source,
        confirmed: bool = False,
        current_time: Optional[datetime] = None,
    ) -> None:
        """Raise AcquisitionPolicyError unless the source is admitted."""
        mode_token = _token(mode)
        source_token = _token(source)
        if not self.is_source_allowed(mode, source, current_time):
            raise AcquisitionPolicyError(ACQ_SOURCE_BLOCKED, mode_token, source_token)
        if self.requires_confirmation(mode, source) and not confirmed:
            raise AcquisitionPolicyError(ACQ_CONFIRMATION_REQUIRED, mode_token, source_token)


DEFAULT_ACQUISITION_POLICY = AcquisitionPolicy()


def is_source_allowed(mode, source, current_time: Optional[datetime] = None) -> bool:
    return DEFAULT_ACQUISITION_POLICY.is_source_allowed(mode, source, current_time)


def requires_confirmation(mode, source) -> bool:
    return DEFAULT_ACQUISITION_POLICY.requires_confirmation(mode, source)


def assert_source_allowed(mode, source, confirmed: bool = False) -> None:
    DEFAULT_ACQUISITION_POLICY.assert_source_allowed(mode, source, confirmed)
