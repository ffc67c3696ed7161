"""
Code Sequence Service for Atomic Code Generation

- Continuous sequence per (prefix, scope), e.g. one per year for deliveries
- Atomic increment with database-level locking plus an in-process keyed lock
- Counter is synced from the highest code actually stored, so codes written
  before the counter existed (imports, manual fixes) are never reissued

USAGE:
    from app.services.code_sequence_service import CodeSequenceService

    async def schedule(db: AsyncSession):
        service = CodeSequenceService(db)
        code = await service.next_code("ENT", "2024")
        # Returns: ENT-2024-001

SUPPORTED PREFIXES:
    ENT - Delivery (year scoped)
    GAS - Distribution expense
    TR  - Carrier
"""

import logging
import re
from typing import Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.locks import sequence_locks
from app.models.carrier import Carrier
from app.models.code_sequence import CodeSequence
from app.models.delivery import Delivery
from app.models.expense import Expense


logger = logging.getLogger(__name__)


# Prefix metadata: the column whose stored codes are scanned, and padding
SEQUENCE_METADATA: Dict[str, dict] = {
    settings.DELIVERY_CODE_PREFIX: {"column": Delivery.code, "padding": settings.CODE_SEQUENCE_PADDING},
    settings.EXPENSE_CODE_PREFIX: {"column": Expense.expense_number, "padding": settings.EXPENSE_CODE_PADDING},
    "TR": {"column": Carrier.code, "padding": settings.CODE_SEQUENCE_PADDING},
}

SEPARATOR = "-"


def code_stem(prefix: str, scope: Optional[str] = None) -> str:
    return f"{prefix}{SEPARATOR}{scope}" if scope else prefix


def format_code(prefix: str, scope: Optional[str], number: int, padding: int) -> str:
    return f"{code_stem(prefix, scope)}{SEPARATOR}{str(number).zfill(padding)}"


class CodeSequenceService:
    """
    Service for generating sequential, human-readable codes.

    Uses SELECT FOR UPDATE on the counter row so no duplicate codes are
    issued under concurrent load (the row lock is a no-op on SQLite, where
    the database-wide write lock serializes writers instead).
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    @staticmethod
    def _metadata(prefix: str) -> dict:
        prefix = prefix.upper()
        if prefix not in SEQUENCE_METADATA:
            valid = ", ".join(SEQUENCE_METADATA.keys())
            raise ValueError(f"Invalid code prefix '{prefix}'. Valid prefixes: {valid}")
        return SEQUENCE_METADATA[prefix]

    async def scan_max_suffix(self, prefix: str, scope: Optional[str] = None) -> int:
        """
        Highest numeric suffix among stored codes matching prefix[-scope]-NNN.

        Codes that do not match the pattern are ignored. Returns 0 when none match.
        """
        prefix = prefix.upper()
        column = self._metadata(prefix)["column"]
        stem = code_stem(prefix, scope)
        pattern = re.compile(rf"^{re.escape(stem)}{SEPARATOR}(\d+)$")

        result = await self.db.execute(
            select(column).where(column.like(f"{stem}{SEPARATOR}%"))
        )
        max_number = 0
        for code in result.scalars():
            match = pattern.match(code or "")
            if match:
                max_number = max(max_number, int(match.group(1)))
        return max_number

    async def next_code(self, prefix: str, scope: Optional[str] = None) -> str:
        """
        Allocate the next code with atomic increment.

        Returns max(counter, highest stored suffix) + 1, zero padded.

        Raises:
            ValueError: If prefix is not registered
        """
        prefix = prefix.upper()
        scope = scope or ""

        # Held until the caller commits, so no other session reads the old counter
        await sequence_locks.hold_for_transaction(self.db, (prefix, scope))

        sequence = await self._get_or_create_sequence(prefix, scope)
        old_number = sequence.current_number

        scanned = await self.scan_max_suffix(prefix, scope)
        if scanned > sequence.current_number:
            logger.warning(
                f"Sequence {sequence.stem} behind stored codes "
                f"({sequence.current_number} < {scanned}), syncing"
            )
            sequence.current_number = scanned

        code = sequence.get_next_code()
        await self.db.flush()

        logger.debug(f"Sequence {sequence.stem}: {old_number} -> {sequence.current_number} ({code})")
        return code

    async def preview_next_code(self, prefix: str, scope: Optional[str] = None) -> str:
        """What next_code would return right now, without incrementing."""
        prefix = prefix.upper()
        metadata = self._metadata(prefix)

        result = await self.db.execute(
            select(CodeSequence.current_number).where(
                CodeSequence.prefix == prefix,
                CodeSequence.scope == (scope or "")
            )
        )
        current = result.scalar_one_or_none() or 0
        scanned = await self.scan_max_suffix(prefix, scope)
        return format_code(prefix, scope, max(current, scanned) + 1, metadata["padding"])

    async def _get_or_create_sequence(self, prefix: str, scope: str) -> CodeSequence:
        """Get existing counter row with row lock, or create a new one."""
        result = await self.db.execute(
            select(CodeSequence)
            .where(
                CodeSequence.prefix == prefix,
                CodeSequence.scope == scope
            )
            .with_for_update()
        )
        sequence = result.scalar_one_or_none()

        if sequence:
            return sequence

        sequence = CodeSequence(
            prefix=prefix,
            scope=scope,
            current_number=0,
            padding_length=self._metadata(prefix)["padding"],
            separator=SEPARATOR,
        )
        self.db.add(sequence)
        await self.db.flush()

        # Re-fetch with lock to ensure atomicity
        result = await self.db.execute(
            select(CodeSequence)
            .where(CodeSequence.id == sequence.id)
            .with_for_update()
        )
        return result.scalar_one()
