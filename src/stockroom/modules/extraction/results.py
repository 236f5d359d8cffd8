"""Outcome types passed from the parser and the batch handler to the queue runner.

The runner decides between backoff and terminal failure by matching on these
classes, never by inspecting exception messages.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass

from stockroom.modules.extraction.schemas import ParsedDocument


@dataclass(frozen=True)
class Parsed:
    document: ParsedDocument
    method: str
    provider_unavailable: bool = False


@dataclass(frozen=True)
class RetryableError:
    message: str


@dataclass(frozen=True)
class FatalError:
    message: str


ParseOutcome = Parsed | RetryableError | FatalError


@dataclass(frozen=True)
class Completed:
    batch_id: uuid.UUID
    method: str
    items_extracted: int
    items_matched: int
    provider_unavailable: bool = False


@dataclass(frozen=True)
class Skipped:
    batch_id: uuid.UUID
    reason: str


ProcessingOutcome = Completed | Skipped | RetryableError | FatalError
