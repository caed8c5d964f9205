from typing import Optional

from pydantic import BaseModel, ConfigDict

from app.db.models import NotificationTier

DO_NOT_RECREATE_SUFFIX = "donotrecreate"


class OriginTag(BaseModel):
    """
    Structured form of a notification's ``origin_tag`` column.

    Persisted as ``{tier}-{task_id}`` with a ``-donotrecreate`` suffix when a
    user dismissal should stop that tier from being recreated for the task.
    """

    model_config = ConfigDict(frozen=True)

    tier: NotificationTier
    task_id: str
    permanently_muted: bool = False

    def to_string(self) -> str:
        tag = f"{self.tier.value}-{self.task_id}"
        if self.permanently_muted:
            tag = f"{tag}-{DO_NOT_RECREATE_SUFFIX}"
        return tag

    def muted(self) -> "OriginTag":
        return self.model_copy(update={"permanently_muted": True})

    @classmethod
    def parse(cls, raw: Optional[str]) -> Optional["OriginTag"]:
        """Parse a stored tag, returning None when it is not recognisable."""
        if not raw:
            return None

        tier_value, sep, rest = raw.partition("-")
        if not sep:
            return None
        try:
            tier = NotificationTier(tier_value)
        except ValueError:
            return None

        permanently_muted = False
        suffix = f"-{DO_NOT_RECREATE_SUFFIX}"
        if rest.endswith(suffix):
            rest = rest[: -len(suffix)]
            permanently_muted = True

        if not rest:
            return None
        return cls(tier=tier, task_id=rest, permanently_muted=permanently_muted)
