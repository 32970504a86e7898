"""ORM models for the repair kernel."""

from repair_kernel.models.automation import EffectAttemptModel, EscalationNoticeModel
from repair_kernel.models.job_sheet import JobSheetModel
from repair_kernel.models.transition_record import TransitionRecordModel


def import_all_models() -> None:
    """Import every module that declares tables so Base.metadata sees them."""
    import repair_kernel.models.automation  # noqa: F401
    import repair_kernel.models.job_sheet  # noqa: F401
    import repair_kernel.models.transition_record  # noqa: F401
    import repair_kernel.services.sequence_service  # noqa: F401


__all__ = [
    "EffectAttemptModel",
    "EscalationNoticeModel",
    "JobSheetModel",
    "TransitionRecordModel",
    "import_all_models",
]
