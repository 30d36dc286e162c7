"""
Order Lifecycle

Advances an order through preview generation, the payment gate and 3D model
generation. There is no background worker: each status poll from the client
moves the order at most one step by polling the provider, storing finished
assets and updating the order row.

    created -> processing -> preview_ready -> paid -> (model task) -> model stored
                  |  ^                                     |
                  v  | retry                               v
                 failed  <---------------------------------+

Asset paths are written only after the bytes are in the outputs bucket.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from fastapi import Depends

from ..config import Settings, get_settings
from ..models import Order, OrderStatus, status_value
from ..models.order import RETRYABLE_STATUSES, is_paid_status
from ..prompts import build_preview_prompt
from .meshy import MeshyClient, MeshyError, TaskStatus, get_meshy_client, is_retryable_error
from .orders import OrderRepository, get_order_repository
from .storage import StorageError, StorageService, get_storage_service

logger = logging.getLogger(__name__)

STAGE_PREVIEW = "clay_preview"
STAGE_MODEL = "model"

# File name, order column and content type of each stored 3D artifact
MODEL_ARTIFACTS = (
    ("glb", "model_glb_path", "model/gltf-binary"),
    ("obj", "model_obj_path", "text/plain"),
)

MODEL_BUSY_TOO_LONG = (
    "The 3D generator stayed busy too long. Please contact us and we will restart your model."
)


class LifecycleError(Exception):
    """Base error for customer-initiated lifecycle actions."""


class RetryNotAllowed(LifecycleError):
    """The order is in a status that cannot start a new preview."""


class NoUploadFound(LifecycleError):
    """The order has no uploaded photo to regenerate from."""


@dataclass
class StatusReport:
    """What a status poll tells the client besides the order itself."""
    stage: str
    progress: int | None
    message: str | None
    payment_locked: bool


def preview_path(order_id) -> str:
    return f"{order_id}/clay_preview.png"


def model_path(order_id, fmt: str) -> str:
    return f"{order_id}/model.{fmt}"


class OrderLifecycle:
    """
    Order state machine.

    Preview phase (unpaid): submit image-to-image, poll it, store the clay
    preview. Model phase (paid-like statuses only): submit image-to-3d from
    the stored preview, poll it, store GLB/OBJ.
    """

    def __init__(
        self,
        repo: OrderRepository,
        storage: StorageService,
        meshy: MeshyClient,
        settings: Settings | None = None,
    ):
        self.repo = repo
        self.storage = storage
        self.meshy = meshy
        self.settings = settings or get_settings()

    def _report(self, order: Order, stage: str, progress: int | None, message: str | None) -> StatusReport:
        return StatusReport(
            stage=stage,
            progress=progress,
            message=message,
            payment_locked=is_paid_status(order.status),
        )

    # ------------------------------------------------------------------
    # Preview phase
    # ------------------------------------------------------------------

    async def start_preview(self, order: Order, upload_path: str) -> str | None:
        """
        Submit the preview task for a new order.

        On success the order is `processing` with the task id stored. On any
        failure it is `failed` with no task id, so a retry can resubmit.

        Returns:
            The task id, or None if submission failed
        """
        try:
            image_url = self.storage.get_presigned_url(self.storage.uploads_bucket, upload_path)
            prompt = build_preview_prompt(order.bust_style, order.style_hint)
            task_id = await self.meshy.submit_preview(prompt, image_url)
        except (StorageError, MeshyError) as e:
            logger.warning("Preview submission failed for order %s: %s", order.id, e)
            await self.repo.update(
                order.id,
                status=OrderStatus.FAILED.value,
                meshy_image_last_error=str(e),
            )
            return None

        await self.repo.update(
            order.id,
            status=OrderStatus.PROCESSING.value,
            meshy_image_task_id=task_id,
            meshy_image_last_error=None,
            generation_started_at=datetime.utcnow(),
        )
        logger.info("Order %s preview task %s started", order.id, task_id)
        return task_id

    async def retry_preview(self, order: Order) -> str:
        """
        Start a brand-new preview task for an existing order.

        The previous task is abandoned and the stored preview cleared.
        Model-phase fields are left as they are.

        Raises:
            RetryNotAllowed: Status is not preview_ready, failed or created
            NoUploadFound: The order has no uploaded photo
            StorageError: The photo could not be signed
            MeshyError: The provider rejected the new task
        """
        current = status_value(order.status)
        if current not in RETRYABLE_STATUSES:
            raise RetryNotAllowed(f"Cannot retry while status is '{current}'")

        upload = await self.repo.latest_upload(order.id)
        if upload is None:
            raise NoUploadFound("No uploaded photo found for this order. Please recreate the order.")

        image_url = self.storage.get_presigned_url(self.storage.uploads_bucket, upload.storage_path)
        prompt = build_preview_prompt(order.bust_style, order.style_hint)
        task_id = await self.meshy.submit_preview(prompt, image_url)

        await self.repo.update(
            order.id,
            status=OrderStatus.PROCESSING.value,
            preview_attempts=(order.preview_attempts or 0) + 1,
            generation_started_at=datetime.utcnow(),
            meshy_image_task_id=task_id,
            meshy_image_last_error=None,
            clay_preview_path=None,
        )
        logger.info("Order %s preview retried with task %s", order.id, task_id)
        return task_id

    async def advance(self, order: Order) -> StatusReport:
        """Move the order forward by at most one step and describe where it is."""
        if is_paid_status(order.status):
            return await self._advance_model(order)
        return await self._advance_preview(order)

    async def _advance_preview(self, order: Order) -> StatusReport:
        current = status_value(order.status)

        # Unpaid preview: read-only, the 3D phase waits for payment
        if current == OrderStatus.PREVIEW_READY.value:
            return self._report(order, STAGE_PREVIEW, 100, None)

        if current == OrderStatus.FAILED.value:
            message = order.meshy_image_last_error or order.meshy_model_last_error
            return self._report(order, STAGE_PREVIEW, 0, message or "Generation failed. You can retry.")

        if current != OrderStatus.PROCESSING.value or not order.meshy_image_task_id:
            return self._report(order, STAGE_PREVIEW, 0, "Waiting for preview task…")

        if order.clay_preview_path:
            await self.repo.update(order.id, status=OrderStatus.PREVIEW_READY.value)
            return self._report(order, STAGE_PREVIEW, 100, None)

        try:
            task = await self.meshy.poll_preview(order.meshy_image_task_id)
        except MeshyError as e:
            logger.warning("Could not poll preview for order %s: %s", order.id, e)
            return self._report(order, STAGE_PREVIEW, 0, "Could not fetch preview status yet. Retrying…")

        if task.status == TaskStatus.FAILED:
            message = task.error_message or "Preview generation failed"
            await self.repo.update(
                order.id,
                status=OrderStatus.FAILED.value,
                meshy_image_last_error=message,
            )
            logger.info("Order %s preview failed: %s", order.id, message)
            return self._report(order, STAGE_PREVIEW, None, message)

        if not task.is_complete:
            return self._report(order, STAGE_PREVIEW, task.progress, task.message)

        if not task.image_urls:
            return self._report(order, STAGE_PREVIEW, 95, "Preview ready but image URL missing. Retrying…")

        try:
            data = await self.meshy.download(task.image_urls[0])
        except MeshyError as e:
            logger.warning("Preview download failed for order %s: %s", order.id, e)
            return self._report(order, STAGE_PREVIEW, 95, "Could not download preview image. Retrying…")

        if len(data) < self.settings.min_preview_bytes:
            logger.warning(
                "Preview for order %s is only %d bytes, waiting for a better one",
                order.id,
                len(data),
            )
            return self._report(order, STAGE_PREVIEW, 95, "Preview image looks broken. Retrying…")

        path = preview_path(order.id)
        try:
            self.storage.upload_bytes(self.storage.outputs_bucket, path, data, "image/png")
        except StorageError:
            return self._report(order, STAGE_PREVIEW, 95, "Could not store preview image. Retrying…")

        await self.repo.update(
            order.id,
            clay_preview_path=path,
            status=OrderStatus.PREVIEW_READY.value,
            meshy_image_last_error=None,
        )
        logger.info("Order %s preview ready", order.id)
        return self._report(order, STAGE_PREVIEW, 100, None)

    # ------------------------------------------------------------------
    # Model phase
    # ------------------------------------------------------------------

    async def _advance_model(self, order: Order) -> StatusReport:
        if order.has_model:
            return self._report(order, STAGE_MODEL, 100, "3D model ready.")

        if not order.clay_preview_path:
            return self._report(
                order, STAGE_MODEL, 0, "Payment received. Waiting for preview image before starting 3D…"
            )

        if not order.meshy_model_task_id:
            return await self._submit_model(order)

        return await self._poll_model(order)

    async def _submit_model(self, order: Order) -> StatusReport:
        try:
            image_url = self.storage.get_presigned_url(self.storage.outputs_bucket, order.clay_preview_path)
        except StorageError:
            return self._report(order, STAGE_MODEL, 0, "Signing preview image for 3D…")

        try:
            task_id = await self.meshy.submit_model(image_url)
        except MeshyError as e:
            # Never terminal: the next poll submits again
            await self.repo.update(
                order.id,
                meshy_model_attempts=(order.meshy_model_attempts or 0) + 1,
                meshy_model_last_error=str(e),
            )
            return self._report(order, STAGE_MODEL, 5, "Meshy is busy starting the 3D job. Retrying…")

        claimed = await self.repo.claim_model_task(order.id, task_id, datetime.utcnow())
        if not claimed:
            logger.warning(
                "Order %s already has a 3D task; abandoning duplicate task %s",
                order.id,
                task_id,
            )
            await self.repo.refresh(order)
        else:
            logger.info("Order %s 3D task %s started", order.id, task_id)

        return self._report(order, STAGE_MODEL, 5, "3D generation started…")

    async def _poll_model(self, order: Order) -> StatusReport:
        try:
            task = await self.meshy.poll_model(order.meshy_model_task_id)
        except MeshyError as e:
            logger.warning("Could not poll 3D task for order %s: %s", order.id, e)
            return self._report(order, STAGE_MODEL, 10, "Could not fetch 3D status from Meshy yet…")

        if task.status == TaskStatus.FAILED:
            return await self._model_failed(order, task.error_message, task.progress)

        if not task.is_complete:
            return self._report(order, STAGE_MODEL, task.progress, task.message)

        stored = {}
        for fmt, column, content_type in MODEL_ARTIFACTS:
            url = task.model_urls.get(fmt)
            if not url:
                continue
            key = model_path(order.id, fmt)
            try:
                data = await self.meshy.download(url)
                self.storage.upload_bytes(self.storage.outputs_bucket, key, data, content_type)
            except (MeshyError, StorageError) as e:
                logger.warning("Could not store %s for order %s: %s", fmt, order.id, e)
                continue
            stored[column] = key

        if not stored:
            return self._report(order, STAGE_MODEL, 99, "3D model finished, saving files. Retrying…")

        await self.repo.update(order.id, meshy_model_last_error=None, **stored)
        logger.info("Order %s 3D model stored (%s)", order.id, ", ".join(sorted(stored)))
        return self._report(order, STAGE_MODEL, 100, "3D model ready.")

    async def _model_failed(self, order: Order, error: str | None, progress: int) -> StatusReport:
        message = error or "3D model generation failed"

        if not is_retryable_error(message):
            await self.repo.update(
                order.id,
                status=OrderStatus.FAILED.value,
                meshy_model_last_error=message,
            )
            logger.info("Order %s 3D generation failed: %s", order.id, message)
            return self._report(order, STAGE_MODEL, None, message)

        attempts = (order.meshy_model_attempts or 0) + 1
        if attempts >= self.settings.max_model_attempts:
            await self.repo.update(
                order.id,
                status=OrderStatus.FAILED.value,
                meshy_model_attempts=attempts,
                meshy_model_last_error=message,
            )
            logger.warning("Order %s 3D generation gave up after %d busy attempts", order.id, attempts)
            return self._report(order, STAGE_MODEL, None, MODEL_BUSY_TOO_LONG)

        await self.repo.update(
            order.id,
            meshy_model_attempts=attempts,
            meshy_model_last_error=message,
        )
        return self._report(
            order,
            STAGE_MODEL,
            max(5, min(95, progress or 27)),
            "Meshy is busy right now. Retrying automatically…",
        )


def get_order_lifecycle(
    repo: OrderRepository = Depends(get_order_repository),
    storage: StorageService = Depends(get_storage_service),
    meshy: MeshyClient = Depends(get_meshy_client),
) -> OrderLifecycle:
    """FastAPI dependency wiring the lifecycle to its collaborators."""
    return OrderLifecycle(repo, storage, meshy)
