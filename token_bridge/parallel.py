"""Run independent transfers in parallel.

Each transfer gets its own :py:class:`~token_bridge.transfer.TokenTransfer`
and thread. Waiting for VAAs dominates the wall clock time of manual
transfers, so running them side by side cuts ``N * wait`` down to
roughly one wait.

Transfers sharing a source signer submit concurrently, so the chain
adapter must handle nonces for parallel use, or give every job its own signer.

Example::

    from token_bridge.parallel import TransferJob, run_transfers_parallel

    jobs = [
        TransferJob(request_to_sepolia, avalanche_account, sepolia_account),
        TransferJob(request_to_base, avalanche_account_2, base_account),
    ]
    transfers = run_transfers_parallel(context, jobs)
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any

from tqdm_loggable.auto import tqdm

from token_bridge.adapter import BridgeContext
from token_bridge.models import TransferPhase, TransferRequest
from token_bridge.transfer import TokenTransfer

logger = logging.getLogger(__name__)

#: Phases a transfer walks through in the happy path, for progress counting
_PROGRESS_PHASES = [
    TransferPhase.created,
    TransferPhase.initiated,
    TransferPhase.attested,
    TransferPhase.completing,
    TransferPhase.completed,
]


@dataclass(slots=True)
class TransferJob:
    """One transfer for :py:func:`run_transfers_parallel`."""

    request: TransferRequest

    #: Signer on the source chain
    source_signer: Any

    #: Signer on the destination chain, manual delivery only
    destination_signer: Any = None


def run_transfers_parallel(
    context: BridgeContext,
    jobs: list[TransferJob],
    attestation_timeout: float | None = None,
    max_workers: int | None = None,
    progress: bool = True,
) -> list[TokenTransfer]:
    """Run transfers to completion in parallel threads.

    :param jobs:
        Transfers to run.

    :param attestation_timeout:
        Seconds each manual transfer waits for its VAA.

    :param max_workers:
        Thread count, defaults to one per job.

    :param progress:
        Show a ``tqdm`` progress bar advancing on phase transitions.

    :return:
        Transfers in the same order as ``jobs``.

    :raises Exception:
        The first error of any transfer. Other transfers keep running to their end.
    """
    if not jobs:
        return []

    if max_workers is None:
        max_workers = len(jobs)

    n_jobs = len(jobs)
    n_steps = len(_PROGRESS_PHASES) - 1
    logger.info("Running %d transfers in parallel", n_jobs)

    lock = threading.Lock()
    transfer_phases: list[TransferPhase] = [TransferPhase.created] * n_jobs

    progress_bar = tqdm(
        total=n_jobs * n_steps,
        desc="Token transfers",
        unit="phase",
        disable=not progress,
    )

    def _update_phase(idx: int, phase: TransferPhase):
        with lock:
            old_phase = transfer_phases[idx]
            transfer_phases[idx] = phase
            if phase in _PROGRESS_PHASES and old_phase in _PROGRESS_PHASES:
                advance = _PROGRESS_PHASES.index(phase) - _PROGRESS_PHASES.index(old_phase)
                if advance > 0:
                    progress_bar.update(advance)
            parts = [f"{jobs[i].request.destination_chain}:{transfer_phases[i].value}" for i in range(n_jobs)]
            progress_bar.set_description(f"Transfers [{', '.join(parts)}]")

    def _run(idx: int, transfer: TokenTransfer, job: TransferJob) -> TokenTransfer:
        threading.current_thread().name = f"transfer-{idx}-{job.request.destination_chain}"
        transfer.run_to_completion(job.source_signer, job.destination_signer, attestation_timeout=attestation_timeout)
        return transfer

    transfers = []
    for idx, job in enumerate(jobs):
        transfers.append(TokenTransfer(context, job.request, on_phase_change=lambda t, phase, idx=idx: _update_phase(idx, phase)))

    try:
        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="token-transfer") as executor:
            futures = {executor.submit(_run, idx, transfer, job): idx for idx, (transfer, job) in enumerate(zip(transfers, jobs))}
            for future in as_completed(futures):
                # Let exceptions propagate
                future.result()
    finally:
        progress_bar.close()

    return transfers
