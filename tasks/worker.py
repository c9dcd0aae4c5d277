"""Celery application for background billing package generation."""

from __future__ import annotations

import ssl
from pathlib import Path
from typing import Any

import structlog
from celery import Celery, signals
from kombu import Queue

from app.backend.src.core.config import Settings, get_settings

LOGGER = structlog.get_logger(__name__)
PROJECT_ROOT = Path(__file__).resolve().parents[1]

BILLING_QUEUE = "billing"
TASK_NAMESPACE = "tasks."

settings = get_settings()


def _redis_ssl_options(url: str, ca_cert_path: str | None) -> dict[str, Any] | None:
    """SSL options for ``rediss://`` URLs, ``None`` for plain connections.

    redis-py only accepts an absolute ``ssl_ca_certs`` path; relative paths
    are resolved against the project root and a missing file falls back to
    the system trust store.
    """

    if not url.startswith("rediss://"):
        return None

    options: dict[str, Any] = {"ssl_cert_reqs": ssl.CERT_REQUIRED}
    if not ca_cert_path:
        return options

    candidate = Path(ca_cert_path).expanduser()
    if not candidate.is_absolute():
        candidate = PROJECT_ROOT / candidate
    if candidate.is_file():
        options["ssl_ca_certs"] = str(candidate)
    else:
        LOGGER.warning(
            "redis_ca_certificate_missing",
            configured_path=ca_cert_path,
            resolved_path=str(candidate),
        )
    return options


def create_celery_app(config: Settings) -> Celery:
    """Build the Celery app that runs :mod:`tasks.billing_tasks`."""

    app = Celery(
        "billing_packages",
        broker=config.broker_url,
        backend=config.result_backend,
        include=["tasks.billing_tasks"],
    )
    app.conf.update(
        task_default_queue=BILLING_QUEUE,
        task_queues=(Queue(BILLING_QUEUE),),
        task_routes={f"{TASK_NAMESPACE}generate_billing_package": {"queue": BILLING_QUEUE}},
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        worker_prefetch_multiplier=1,
        task_acks_late=True,
        broker_transport_options={"global_keyprefix": "billing-packages-broker:"},
        result_backend_transport_options={"global_keyprefix": "billing-packages-result:"},
        broker_connection_retry_on_startup=True,
    )

    broker_ssl = _redis_ssl_options(config.broker_url, config.redis_ca_cert_path)
    if broker_ssl is not None:
        app.conf.broker_use_ssl = broker_ssl
    backend_ssl = _redis_ssl_options(config.result_backend, config.redis_ca_cert_path)
    if backend_ssl is not None:
        app.conf.redis_backend_use_ssl = backend_ssl

    LOGGER.info(
        "celery_bootstrap_ready",
        broker=config.broker_url,
        backend=config.result_backend,
    )
    return app


celery = create_celery_app(settings)


def _is_billing_task(task: Any | None) -> bool:
    name = getattr(task, "name", "") or ""
    return not name or name.startswith(TASK_NAMESPACE)


@signals.worker_ready.connect
def _on_worker_ready(sender: Any | None = None, **_: Any) -> None:
    """Check the broker once and log what this worker consumes."""

    app = sender.app if sender is not None else celery
    try:
        with app.connection_for_read() as connection:
            connection.ensure_connection(max_retries=1)
    except Exception as exc:  # pragma: no cover - requires broker connectivity
        LOGGER.error("celery_broker_unavailable", broker=settings.broker_url, error=str(exc))
        raise

    LOGGER.info(
        "celery_worker_configuration",
        default_queue=app.conf.task_default_queue,
        queues=sorted(queue.name for queue in app.conf.task_queues or []),
        registered_tasks=sorted(name for name in app.tasks if name.startswith(TASK_NAMESPACE)),
    )


@signals.task_prerun.connect
def _on_task_prerun(
    task_id: str | None = None,
    task: Any | None = None,
    args: tuple[Any, ...] = (),
    kwargs: dict[str, Any] | None = None,
    **_: Any,
) -> None:
    if not _is_billing_task(task):
        return
    kwargs = kwargs or {}
    LOGGER.info(
        "celery_task_prerun",
        task_id=task_id,
        task_name=getattr(task, "name", None),
        invoice_id=args[0] if args else kwargs.get("invoice_id"),
    )


@signals.task_postrun.connect
def _on_task_postrun(
    task_id: str | None = None,
    task: Any | None = None,
    retval: Any | None = None,
    state: str | None = None,
    **_: Any,
) -> None:
    if not _is_billing_task(task):
        return
    outcome = retval if state == "SUCCESS" and isinstance(retval, dict) else {}
    LOGGER.info(
        "celery_task_postrun",
        task_id=task_id,
        task_name=getattr(task, "name", None),
        state=state,
        success=outcome.get("success"),
        invoice_id=outcome.get("invoice_id"),
        error=outcome.get("error"),
    )


__all__ = ["BILLING_QUEUE", "celery", "create_celery_app"]
