"""
Retention policy for Clawstash.

Snapshot deletion is delegated to restic's own ``forget --prune`` logic;
this module only holds the policy values and turns them into restic flags.
"""

from dataclasses import dataclass
from typing import Any, Dict, List

from clawstash_py.errors import ValidationError

# Field name, config key, restic flag
_FIELDS = (
    ("keep_last", "keepLast", "--keep-last"),
    ("keep_daily", "keepDaily", "--keep-daily"),
    ("keep_weekly", "keepWeekly", "--keep-weekly"),
    ("keep_monthly", "keepMonthly", "--keep-monthly"),
)


@dataclass
class RetentionPolicy:
    """Retention policy configuration.

    A value of 0 means the bucket is not applied at all; restic has no way
    to express "keep zero of this bucket" through omission.
    """

    keep_last: int = 7
    keep_daily: int = 30
    keep_weekly: int = 12
    keep_monthly: int = 6

    def __post_init__(self) -> None:
        for attr, _, _ in _FIELDS:
            value = getattr(self, attr)
            if value is None:
                setattr(self, attr, 0)
            elif not isinstance(value, int) or value < 0:
                raise ValidationError(
                    f"Retention value {attr} must be a non-negative integer, "
                    f"got {value!r}"
                )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RetentionPolicy":
        """
        Create a RetentionPolicy from a dictionary.

        Args:
            data: Dictionary with camelCase keys (``keepLast`` ...)

        Returns:
            RetentionPolicy instance. Missing keys take the defaults.
        """
        if not isinstance(data, dict):
            return cls()
        defaults = cls()
        return cls(
            **{
                attr: data.get(key, getattr(defaults, attr))
                for attr, key, _ in _FIELDS
            }
        )

    def to_dict(self) -> Dict[str, int]:
        return {key: getattr(self, attr) for attr, key, _ in _FIELDS}

    def forget_args(self) -> List[str]:
        """
        Build the ``--keep-*`` flags for ``restic forget``.

        Returns:
            One flag/value pair per non-zero field, in a fixed order.
        """
        args: List[str] = []
        for attr, _, flag in _FIELDS:
            value = getattr(self, attr)
            if value:
                args.extend([flag, str(value)])
        return args

    def describe(self) -> str:
        return (
            f"{self.keep_last} latest, {self.keep_daily} daily, "
            f"{self.keep_weekly} weekly, {self.keep_monthly} monthly"
        )
