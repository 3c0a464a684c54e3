from fastapi import BackgroundTasks, Request

from printflow.services.notification_service import EmailOutbox, deliver_notifications
from printflow.services.provider_factory import Collaborators


def get_collaborators(request: Request) -> Collaborators:
    return request.app.state.collaborators


def get_client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get('x-forwarded-for')
    if forwarded_for:
        return forwarded_for.split(',')[0].strip()
    if request.client:
        return request.client.host
    return None


def get_outbox() -> EmailOutbox:
    return EmailOutbox()


def schedule_outbox(request: Request, background_tasks: BackgroundTasks, outbox: EmailOutbox) -> None:
    """Hand queued notifications to a post-response task. Call only after db.commit()."""
    if not len(outbox):
        return
    background_tasks.add_task(
        deliver_notifications,
        list(outbox.notification_ids),
        dispatcher=request.app.state.collaborators.email,
        session_factory=request.app.state.session_factory,
    )
