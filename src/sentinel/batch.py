"""
Batch monitor: drives the runner over a CSV of transactions or a list of ids.

Rows are processed strictly one at a time. A failing row becomes an
``on_error`` event and the batch carries on with the next one.
"""

import csv
import io
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pandas as pd
import structlog

from .cancellation import CancellationToken
from .errors import CancelledRunError
from .events import EventChannel
from .models import SentinelState, Transaction
from .runner import SentinelRunner, new_run_id

logger = structlog.get_logger(__name__)

INIT_NODE = "init"
INGEST_NODE = "ingest"
TRANSACTION_NODE = "transaction"

BOOL_COLUMNS = {
    "swift_f50_present",
    "swift_f59_present",
    "travel_rule_complete",
    "customer_is_pep",
    "edd_required",
    "edd_performed",
    "sow_documented",
    "is_advised",
    "product_complex",
    "suitability_assessed",
    "product_has_va_exposure",
    "va_disclosure_provided",
    "cash_id_verified",
}
NUMERIC_COLUMNS = {
    "fx_applied_rate",
    "fx_market_rate",
    "fx_spread_bps",
    "daily_cash_total_customer",
    "daily_cash_txn_count",
}
# Columns echoed back in the csv_row event
ROW_PREVIEW_COLUMNS = [
    "booking_jurisdiction",
    "regulator",
    "booking_datetime",
    "amount",
    "currency",
    "originator_name",
    "originator_country",
    "beneficiary_name",
    "beneficiary_country",
    "travel_rule_complete",
    "sanctions_screening",
    "customer_risk_rating",
]

_TRUE_VALUES = {"true", "t", "1", "yes", "y"}
_FALSE_VALUES = {"false", "f", "0", "no", "n"}


def parse_bool(value: Any) -> Optional[bool]:
    if value is None or value == "":
        return None
    normalized = str(value).strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    return None


def parse_num(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def coerce_row(row: Dict[str, str]) -> Dict[str, Any]:
    """Turn a raw string CSV row into typed values. Empty cells become None."""
    out: Dict[str, Any] = {}
    for key, value in row.items():
        if key in BOOL_COLUMNS:
            out[key] = parse_bool(value)
        elif key in NUMERIC_COLUMNS:
            out[key] = parse_num(value)
        elif key == "fx_indicator":
            flag = parse_bool(value)
            out[key] = flag if flag is not None else (value or None)
        else:
            out[key] = value if value != "" else None
    return out


@dataclass
class CsvBatch:
    header_index: int
    fields: List[str]
    total_lines: int
    rows: List[Tuple[int, Dict[str, str]]] = field(default_factory=list)

    @property
    def data_rows(self) -> int:
        return max(0, self.total_lines - (self.header_index + 1))


def parse_transactions_csv(text: str) -> CsvBatch:
    """
    Parse CSV text into raw string rows.

    The header is the first line naming a ``transaction_id`` column (the first
    line when none does). Blank lines are ignored. Each row keeps its line
    index among the non-blank lines.
    """
    lines = [line for line in text.splitlines() if line != ""]
    if not lines:
        return CsvBatch(header_index=0, fields=[], total_lines=0)

    header_index = 0
    for index, line in enumerate(lines):
        cells = next(csv.reader([line]), [])
        if "transaction_id" in [str(cell).strip() for cell in cells]:
            header_index = index
            break

    frame = pd.read_csv(
        io.StringIO("\n".join(lines[header_index:])),
        dtype=str,
        keep_default_na=False,
        skipinitialspace=True,
    )
    frame.columns = [str(column).strip() for column in frame.columns]

    rows = [
        (header_index + 1 + position, {key: str(value).strip() for key, value in record.items()})
        for position, record in enumerate(frame.to_dict(orient="records"))
    ]
    return CsvBatch(header_index=header_index, fields=list(frame.columns), total_lines=len(lines), rows=rows)


def load_csv_file(path: str) -> str:
    csv_file = Path(path)
    if not csv_file.exists():
        raise FileNotFoundError(f"CSV file not found: {path}")
    logger.info("Loading CSV file", path=str(path))
    return csv_file.read_text(encoding="utf-8")


def row_preview(transaction: Transaction) -> Dict[str, Any]:
    preview = {key: transaction.meta.get(key) for key in ROW_PREVIEW_COLUMNS}
    preview["amount"] = transaction.amount
    preview["currency"] = transaction.currency
    return preview


class MonitorBatch:
    """Sequential batch driver on top of ``SentinelRunner``."""

    def __init__(self, runner: SentinelRunner):
        self.runner = runner

    async def _run_one(
        self,
        state: SentinelState,
        channel: EventChannel,
        cancel: CancellationToken,
        error_data: Dict[str, Any],
    ) -> bool:
        try:
            await self.runner.run(state, channel.fork(new_run_id()), cancel)
        except CancelledRunError:
            raise
        except Exception as e:
            logger.error(
                "Transaction run failed",
                run_id=channel.run_id,
                status="row_failed",
                details={**error_data, "error": str(e)},
            )
            await channel.error(TRANSACTION_NODE, str(e), **error_data)
            return False
        return True

    async def run_csv(
        self,
        text: str,
        channel: EventChannel,
        cancel: Optional[CancellationToken] = None,
        limit: Optional[int] = None,
        csv_demo: bool = False,
    ) -> int:
        """
        Score every data row of a CSV. Returns the number of rows processed.

        Raises:
            CancelledRunError: If ``cancel`` fires mid-batch
        """
        cancel = cancel or CancellationToken()
        await channel.node_start(INIT_NODE, {"csv_demo": csv_demo, "limit": limit})

        batch = parse_transactions_csv(text)
        await channel.tool_call(
            INGEST_NODE,
            {"type": "csv_header", "header_index": batch.header_index, "fields": batch.fields},
        )

        maximum = limit if limit and limit > 0 else batch.data_rows
        processed = 0
        for index, raw in batch.rows:
            if processed >= maximum:
                break
            cancel.raise_if_cancelled()

            txn_id = raw.get("transaction_id") or ""
            if not txn_id or txn_id.startswith("//"):
                continue

            try:
                transaction = Transaction.from_row(coerce_row(raw))
            except Exception as e:
                await channel.error(INGEST_NODE, str(e), index=index)
                continue

            await channel.tool_call(
                INGEST_NODE,
                {
                    "type": "csv_row",
                    "index": index,
                    "transaction_id": transaction.id,
                    "meta": row_preview(transaction),
                },
            )

            state = SentinelState(transaction_id=transaction.id, transaction=transaction)
            await self._run_one(state, channel, cancel, {"index": index, "transaction_id": transaction.id})
            processed += 1

        await channel.node_end(
            INGEST_NODE,
            {"processed": processed, "total_lines": batch.total_lines, "data_rows": batch.data_rows},
        )
        return processed

    async def run_ids(
        self,
        transaction_ids: Sequence[str],
        channel: EventChannel,
        cancel: Optional[CancellationToken] = None,
    ) -> int:
        """Score stored transactions in list order. Returns the number attempted."""
        cancel = cancel or CancellationToken()
        await channel.node_start(INIT_NODE, {"transaction_ids": list(transaction_ids)})

        attempted = 0
        for txn_id in transaction_ids:
            cancel.raise_if_cancelled()
            await self._run_one(
                SentinelState(transaction_id=txn_id), channel, cancel, {"transaction_id": txn_id}
            )
            attempted += 1
        return attempted
