"""Threshold configuration for the attendance analytics engine."""

import os
from typing import Dict, Optional, Mapping

from pydantic import BaseModel, ConfigDict, Field, model_validator


TRUE_VALUES = ('1', 'true', 'yes', 'on')


def parse_thresholds(thresholds_str: str) -> Dict[str, float]:
    """
    Parse a 'name:value,name:value' string into a dict.

    Args:
        thresholds_str: e.g. 'critical:40,monitor:20,follow_up:10'

    Returns:
        Mapping of lower-cased names to float values
    """
    thresholds = {}
    for item in thresholds_str.split(','):
        if not item.strip():
            continue
        key, value = item.split(':')
        thresholds[key.strip().lower()] = float(value.strip())
    return thresholds


class AnalyticsConfig(BaseModel):
    """
    Every threshold the engine uses, in one place.

    Risk tiers are lower-bound inclusive: an absence rate of exactly
    ``monitor_at`` is Monitor, exactly ``critical_at`` is Critical.
    """
    model_config = ConfigDict(frozen=True)

    critical_at: float = Field(40.0, ge=0, le=100)
    monitor_at: float = Field(20.0, ge=0, le=100)
    follow_up_at: float = Field(10.0, ge=0, le=100)
    high_absence_at: float = Field(20.0, ge=0, le=100)
    trend_diff_threshold: float = Field(5.0, ge=0)
    min_consecutive_absences: int = Field(3, ge=1)
    min_absence_rate: float = Field(10.0, ge=0, le=100)
    high_absence_course_min_students: int = Field(5, ge=1)

    # Which outcomes count as attended in per-session course rates
    count_present: bool = True
    count_late: bool = True
    count_leave: bool = False

    unchecked_breaks_run: bool = False
    unknown_token_policy: str = Field('unchecked', pattern='^(unchecked|discard)$')
    unspecified_label: str = 'unspecified'

    @model_validator(mode='after')
    def _check_tier_order(self):
        if not self.critical_at > self.monitor_at > self.follow_up_at:
            raise ValueError(
                f"Risk thresholds must be strictly descending "
                f"(critical {self.critical_at}, monitor {self.monitor_at}, "
                f"follow_up {self.follow_up_at})"
            )
        return self

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'AnalyticsConfig':
        """Build a config from environment variables, falling back to defaults."""
        env = os.environ if environ is None else environ
        values = {}

        thresholds_str = env.get('RISK_THRESHOLDS')
        if thresholds_str:
            tiers = parse_thresholds(thresholds_str)
            for name in ('critical', 'monitor', 'follow_up'):
                if name in tiers:
                    values[f'{name}_at'] = tiers[name]

        numeric = {
            'HIGH_ABSENCE_AT': ('high_absence_at', float),
            'TREND_DIFF_THRESHOLD': ('trend_diff_threshold', float),
            'MIN_CONSECUTIVE_ABSENCES': ('min_consecutive_absences', int),
            'MIN_ABSENCE_RATE': ('min_absence_rate', float),
            'HIGH_ABSENCE_COURSE_MIN_STUDENTS': ('high_absence_course_min_students', int),
        }
        for env_name, (field, cast) in numeric.items():
            if env.get(env_name):
                values[field] = cast(env[env_name])

        if env.get('COUNT_LEAVE_AS_ATTENDED'):
            values['count_leave'] = env['COUNT_LEAVE_AS_ATTENDED'].lower() in TRUE_VALUES
        if env.get('UNCHECKED_BREAKS_RUN'):
            values['unchecked_breaks_run'] = env['UNCHECKED_BREAKS_RUN'].lower() in TRUE_VALUES
        if env.get('UNKNOWN_TOKEN_POLICY'):
            values['unknown_token_policy'] = env['UNKNOWN_TOKEN_POLICY'].strip().lower()
        if env.get('UNSPECIFIED_LABEL'):
            values['unspecified_label'] = env['UNSPECIFIED_LABEL']

        return cls(**values)
