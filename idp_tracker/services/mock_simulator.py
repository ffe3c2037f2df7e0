from __future__ import annotations

import random
import threading
from typing import Callable, Dict, List, Optional

from ..models import ExtractedField, ExtractedTable, ExtractionResult
from ..utils.logger import Log

CompletionCallback = Callable[[str, ExtractionResult], object]


def _fields(rows: List[tuple]) -> List[ExtractedField]:
    return [
        ExtractedField(name=name, value=value, confidence=confidence, category=category)
        for name, value, confidence, category in rows
    ]


def invoice_result() -> ExtractionResult:
    return ExtractionResult(
        document_type="invoice",
        overall_confidence=92.5,
        fields=_fields(
            [
                ("Invoice Number", "INV-2026-001", 98, "identification"),
                ("Invoice Date", "2026-01-15", 95, "identification"),
                ("Vendor Name", "Acme Corporation", 97, "vendor"),
                ("Vendor Address", "123 Business St, City, State 12345", 89, "vendor"),
                ("Total Amount", 1250.00, 99, "financial"),
                ("Tax Amount", 125.00, 96, "financial"),
                ("Subtotal", 1125.00, 98, "financial"),
                ("Payment Terms", "Net 30", 85, "terms"),
                ("Due Date", "2026-02-14", 92, "terms"),
            ]
        ),
        tables=[
            ExtractedTable(
                name="Line Items",
                rows=[
                    {"description": "Professional Services", "quantity": 40, "rate": 25.00, "amount": 1000.00},
                    {"description": "Software License", "quantity": 1, "rate": 125.00, "amount": 125.00},
                ],
            )
        ],
    )


def resume_result() -> ExtractionResult:
    return ExtractionResult(
        document_type="resume",
        overall_confidence=88.0,
        fields=_fields(
            [
                ("Full Name", "John Doe", 99, "personal"),
                ("Email", "john.doe@email.com", 97, "contact"),
                ("Phone", "+1 555-0123", 94, "contact"),
                ("Location", "San Francisco, CA", 91, "contact"),
                ("Job Title", "Senior Software Engineer", 95, "professional"),
                ("Years of Experience", 8, 87, "professional"),
                ("Education", "B.S. Computer Science", 92, "education"),
                ("Skills", "React, TypeScript, Node.js, AWS", 89, "skills"),
            ]
        ),
    )


def receipt_result() -> ExtractionResult:
    return ExtractionResult(
        document_type="receipt",
        overall_confidence=85.5,
        fields=_fields(
            [
                ("Merchant", "Coffee Shop", 96, "merchant"),
                ("Date", "2026-01-15", 92, "transaction"),
                ("Time", "14:35", 88, "transaction"),
                ("Total", 15.75, 99, "financial"),
                ("Payment Method", "Credit Card", 94, "payment"),
                ("Card Last 4", "1234", 97, "payment"),
            ]
        ),
    )


CANNED_RESULTS = (invoice_result, resume_result, receipt_result)


class MockSimulator:
    """Completes documents with canned extraction results after a delay."""

    def __init__(self, delay_seconds: float, rng: Optional[random.Random] = None) -> None:
        self.delay_seconds = delay_seconds
        self.rng = rng or random.Random()
        self._timers: Dict[str, threading.Timer] = {}
        self._lock = threading.Lock()

    def generate_result(self) -> ExtractionResult:
        return self.rng.choice(CANNED_RESULTS)()

    def schedule(self, document_id: str, on_result: CompletionCallback) -> None:
        timer = threading.Timer(self.delay_seconds, self._fire, args=(document_id, on_result))
        timer.daemon = True
        timer.name = f"mock-{document_id[:8]}"
        with self._lock:
            self._timers[document_id] = timer
        Log.info(f"Mock completion for {document_id} in {self.delay_seconds:.2f}s")
        timer.start()

    def _fire(self, document_id: str, on_result: CompletionCallback) -> None:
        with self._lock:
            self._timers.pop(document_id, None)
        try:
            on_result(document_id, self.generate_result())
        except Exception:  # noqa: BLE001
            Log.exception(f"Mock completion for {document_id} failed")

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._timers)

    def cancel_all(self) -> None:
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()
