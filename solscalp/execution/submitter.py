"""
Transaction submission with bounded retry.

Wraps a TransactionSigner: transient submission failures are retried up to
`max_attempts` times with linear backoff (`retry_interval × attempt`), then
surfaced to the sell executor as TransactionSubmitError.
"""
from typing import Optional

from solscalp.domain.protocols import TransactionSigner
from solscalp.exceptions import OperationalError, TransactionSubmitError
from solscalp.monitoring.logger import get_logger
from solscalp.utils.retry import Sleep, call_with_retry

logger = get_logger(__name__)


class TransactionSubmitter:
    def __init__(
        self,
        signer: TransactionSigner,
        max_attempts: int = 3,
        retry_interval: float = 2.0,
        sleep: Optional[Sleep] = None,
    ):
        self._signer = signer
        self.max_attempts = max_attempts
        self.retry_interval = retry_interval
        self._sleep = sleep

    @property
    def wallet_address(self) -> str:
        return self._signer.wallet_address

    async def submit(self, transaction: str) -> str:
        """
        Sign, broadcast and confirm a base64 transaction.

        Returns:
            Transaction signature (or paper reference)

        Raises:
            TransactionSubmitError: all attempts failed
        """
        try:
            signature = await call_with_retry(
                self._signer.sign_and_send,
                transaction,
                max_attempts=self.max_attempts,
                base_delay=self.retry_interval,
                transient_errors=(OperationalError,),
                sleep=self._sleep,
            )
        except TransactionSubmitError:
            raise
        except OperationalError as e:
            raise TransactionSubmitError(f"Transaction submission failed: {e}") from e

        logger.info("Transaction confirmed", signature=signature)
        return signature
