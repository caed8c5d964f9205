from typing import Any, Dict, Mapping, Optional

from app.config.settings import settings
from app.utils.logging import get_logger

logger = get_logger()

# Catalogue of in-app templates per locale. Rows only store the keys and the
# parameters, so wording can change here without touching stored data.
DEFAULT_TEMPLATES: Dict[str, Dict[str, str]] = {
    "en": {
        "overdue_task": "Overdue Task",
        "overdue_task_message": '"{title}" is overdue by {days_overdue} day(s)',
        "due_today": "Due Today",
        "due_today_message": '"{title}" is due today',
        "due_tomorrow": "Due Tomorrow",
        "due_tomorrow_message": '"{title}" is due tomorrow',
        "upcoming_deadline": "Upcoming Deadline",
        "upcoming_deadline_message": '"{title}" is due in {days_until_due} days',
    },
    "pt": {
        "overdue_task": "Tarefa Atrasada",
        "overdue_task_message": '"{title}" venceu há {days_overdue} dia(s)',
        "due_today": "Vence Hoje",
        "due_today_message": '"{title}" vence hoje!',
        "due_tomorrow": "Vence Amanhã",
        "due_tomorrow_message": '"{title}" vence amanhã',
        "upcoming_deadline": "Prazo se Aproximando",
        "upcoming_deadline_message": '"{title}" vence em {days_until_due} dias',
    },
}


class MessageRenderer:
    """Turns stored template keys and parameters into display text."""

    def __init__(
        self,
        templates: Optional[Mapping[str, Mapping[str, str]]] = None,
        default_locale: Optional[str] = None,
    ):
        self.templates = templates or DEFAULT_TEMPLATES
        self.default_locale = default_locale or settings.NOTIFICATION_DEFAULT_LOCALE

    def _catalogue(self, locale: Optional[str]) -> Mapping[str, str]:
        if locale and locale in self.templates:
            return self.templates[locale]
        return self.templates.get(self.default_locale, {})

    def render(
        self,
        title_key: str,
        message_key: str,
        params: Dict[str, Any],
        locale: Optional[str] = None,
    ) -> Dict[str, str]:
        """Build subject and body for one notification"""
        catalogue = self._catalogue(locale)
        subject_template = catalogue.get(title_key)
        body_template = catalogue.get(message_key)

        if subject_template is None or body_template is None:
            logger.warning(
                f"No template for {title_key}/{message_key} in locale {locale or self.default_locale}"
            )
            return {
                "subject": subject_template or "Notification",
                "body": body_template or "You have a task reminder",
            }

        try:
            return {
                "subject": subject_template.format(**params),
                "body": body_template.format(**params),
            }
        except KeyError as e:
            logger.error(f"Template error for {message_key}: missing {e}")
            return {"subject": subject_template, "body": body_template}
