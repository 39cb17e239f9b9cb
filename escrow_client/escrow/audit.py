import logging

from django.utils import timezone

logger = logging.getLogger('audit')


def record_outcome(action, project_id, result, subject=None):
    """One audit line per finished payment action."""
    timestamp = timezone.now().isoformat()
    target = f"project {project_id}" if subject is None else f"project {project_id} {subject}"
    logger.info(
        f"[{timestamp}] {action} {target} - {result.get('status')} "
        f"state={result.get('state')} error={result.get('error_type') or '-'}"
    )
