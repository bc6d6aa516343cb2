"""
Hook orchestration for one operation invocation.

The pipeline is::

    BUILD_CONTEXT -> RUN_PRE_HOOKS -> EXECUTE_STORE_OPERATION
                  -> RUN_POST_HOOKS -> EMIT_RESPONSE

A cancel from a hook leaves the pipeline in CANCELLED; an error in any
stage leaves it in FAILED. Write operations open a transaction before the
pre hooks run. It is committed only after the post hooks succeed and is
rolled back on any error or cancel. Reads run without a transaction.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .constants import Messages, StatusCodes
from .context import OperationContext, PipelineState
from .exceptions import EntityRestError
from .store import EntityStore, Transaction


logger = logging.getLogger(__name__)


@dataclass
class OperationResponse:
    """Status and JSON body produced by an operation."""

    status: int
    body: Any


def error_response(error: Exception) -> OperationResponse:
    """
    Map an exception to a response envelope.

    Library errors carry their own status and public body. Foreign
    exceptions that expose a 400 or 404 ``status_code`` keep it; everything
    else is an internal error without detail.
    """
    if isinstance(error, EntityRestError):
        return OperationResponse(error.status_code, error.to_response_body())

    status = getattr(error, 'status_code', None)
    if status == StatusCodes.BAD_REQUEST:
        return OperationResponse(status, {"success": False, "error": Messages.BAD_REQUEST})
    if status == StatusCodes.NOT_FOUND:
        return OperationResponse(status, {"success": False, "error": Messages.NOT_FOUND})
    return OperationResponse(StatusCodes.INTERNAL_ERROR, {"success": False, "error": Messages.INTERNAL_ERROR})


def log_error(context_label: str, error: Exception) -> None:
    if isinstance(error, EntityRestError) and error.status_code < StatusCodes.INTERNAL_ERROR:
        logger.info(f"{context_label} rejected: {error.message}")
        if error.context:
            logger.debug(f"{context_label} rejection context: {error.context}")
    else:
        logger.exception(f"{context_label} failed: {error}")


class HookOrchestrator:
    """Runs hooks and the store step of one operation around a transaction."""

    def __init__(self, store: EntityStore):
        self.store = store

    def run(
        self,
        context: OperationContext,
        execute: Callable[[OperationContext], None],
        use_transaction: bool = False
    ) -> OperationResponse:
        """
        Run the pipeline for a built context.

        Args:
            context: Context produced by the build stage
            execute: Store step; sets ``context.payload``
            use_transaction: Open a transaction around hooks and store step

        Returns:
            The response to emit
        """
        label = f"{context.entity.name}.{context.operation}"
        transaction: Optional[Transaction] = None
        try:
            if use_transaction:
                transaction = self.store.begin()
                context.transaction = transaction

            context.state = PipelineState.RUN_PRE_HOOKS
            for hook in context.config.pre:
                context.pre_result = hook(context)
                if context.cancelled:
                    return self._cancel(context, transaction)

            context.state = PipelineState.EXECUTE_STORE_OPERATION
            execute(context)

            context.state = PipelineState.RUN_POST_HOOKS
            for hook in context.config.post:
                hook(context)
                if context.cancelled:
                    return self._cancel(context, transaction)

            if transaction is not None:
                transaction.commit()
            context.state = PipelineState.EMIT_RESPONSE
            return OperationResponse(context.status_code, context.payload)

        except Exception as e:
            context.state = PipelineState.FAILED
            self._rollback(transaction)
            log_error(label, e)
            return error_response(e)

    def _cancel(self, context: OperationContext, transaction: Optional[Transaction]) -> OperationResponse:
        context.state = PipelineState.CANCELLED
        self._rollback(transaction)
        return OperationResponse(context.cancel_status_code, context.cancel_body)

    @staticmethod
    def _rollback(transaction: Optional[Transaction]) -> None:
        if transaction is not None and transaction.active:
            transaction.rollback()
