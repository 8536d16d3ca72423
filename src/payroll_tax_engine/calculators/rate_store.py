"""Versioned rate tables (PTKP, TER, progressive brackets, BPJS).

A rate table is a JSON payload keyed by its effective date. Payloads are
validated once at load time and turned into an immutable
``RateTableSnapshot``; calculators only ever read snapshots.
"""

from __future__ import annotations

import bisect
import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from importlib import resources
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Iterable, Mapping

from payroll_tax_engine.calculators.types import (
    BPJSProgram,
    BPJSProgramRate,
    MaritalStatus,
    ProgressiveTaxBracket,
    PTKPCategory,
    TERBracket,
)
from payroll_tax_engine.exceptions import (
    RateTableLoadError,
    RateTableNotFoundError,
    UnsupportedProgram,
)
from payroll_tax_engine.periods import period_start

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

MAX_DEPENDENTS = 3


def canonical_json(payload: Mapping[str, Any]) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)


def compute_fingerprint(payload: Mapping[str, Any]) -> str:
    """SHA-256 over the canonical JSON form of a payload."""
    return hashlib.sha256(canonical_json(payload).encode()).hexdigest()


@dataclass(frozen=True)
class RateTableSnapshot:
    """Immutable view of one rate-table version."""

    version: str
    effective_date: date
    ptkp_categories: Mapping[str, PTKPCategory]
    ter_category_map: Mapping[str, str]
    ter_brackets: Mapping[str, tuple[TERBracket, ...]]
    progressive_brackets: tuple[ProgressiveTaxBracket, ...]
    bpjs_rates: tuple[BPJSProgramRate, ...]
    non_npwp_surcharge: Decimal
    fingerprint: str
    payload_json: str

    def to_payload(self) -> dict[str, Any]:
        """Fresh copy of the source payload."""
        return json.loads(self.payload_json)


# ===== Payload parsing =====


def _decimal(version: str | None, where: str, raw: Any) -> Decimal:
    if raw is None or isinstance(raw, bool):
        raise RateTableLoadError(version, f"{where}: expected a number, got {raw!r}")
    try:
        value = Decimal(str(raw))
    except InvalidOperation:
        raise RateTableLoadError(version, f"{where}: not a number: {raw!r}") from None
    if not value.is_finite() or value < 0:
        raise RateTableLoadError(version, f"{where}: must be a finite non-negative number")
    return value


def _optional_decimal(version: str | None, where: str, raw: Any) -> Decimal | None:
    if raw is None:
        return None
    return _decimal(version, where, raw)


def _parse_ptkp(version: str, rows: Any) -> dict[str, PTKPCategory]:
    if not isinstance(rows, list) or not rows:
        raise RateTableLoadError(version, "ptkp_categories must be a non-empty list")

    categories: dict[str, PTKPCategory] = {}
    seen_keys: set[tuple[MaritalStatus, bool, int]] = set()
    for row in rows:
        try:
            status = MaritalStatus(row["marital_status"])
            combined = bool(row.get("income_combined", False))
            dependents = int(row["dependents"])
            code = row["code"]
        except (KeyError, TypeError, ValueError) as e:
            raise RateTableLoadError(version, f"bad PTKP row {row!r}: {e}") from None

        if not 0 <= dependents <= MAX_DEPENDENTS:
            raise RateTableLoadError(version, f"PTKP {code}: dependents out of range")
        if combined and status is not MaritalStatus.K:
            raise RateTableLoadError(version, f"PTKP {code}: combined income requires K")
        if code != PTKPCategory.build_code(status, combined, dependents):
            raise RateTableLoadError(version, f"PTKP code {code!r} does not match its fields")
        if code in categories or (status, combined, dependents) in seen_keys:
            raise RateTableLoadError(version, f"duplicate PTKP category {code}")

        seen_keys.add((status, combined, dependents))
        categories[code] = PTKPCategory(
            code=code,
            marital_status=status,
            income_combined=combined,
            dependents=dependents,
            annual_allowance=_decimal(version, f"PTKP {code}", row.get("annual_allowance")),
        )
    return categories


def _parse_ter_brackets(version: str, raw: Any) -> dict[str, tuple[TERBracket, ...]]:
    """Parse TER tables.

    Each bracket is either ``[min, rate]`` (upper bound taken from the next
    row) or ``{"min", "max", "rate"}``.
    """
    if not isinstance(raw, dict) or not raw:
        raise RateTableLoadError(version, "ter_brackets must be a non-empty mapping")

    tables: dict[str, tuple[TERBracket, ...]] = {}
    for category, rows in raw.items():
        where = f"TER {category}"
        if not isinstance(rows, list) or not rows:
            raise RateTableLoadError(version, f"{where}: no brackets")

        parsed: list[tuple[Decimal, Decimal | None, Decimal]] = []
        for row in rows:
            if isinstance(row, dict):
                parsed.append((
                    _decimal(version, where, row.get("min")),
                    _optional_decimal(version, where, row.get("max")),
                    _decimal(version, where, row.get("rate")),
                ))
            elif isinstance(row, (list, tuple)) and len(row) == 2:
                parsed.append((_decimal(version, where, row[0]), None, _decimal(version, where, row[1])))
            else:
                raise RateTableLoadError(version, f"{where}: bad bracket {row!r}")

        brackets = []
        for i, (low, high, rate) in enumerate(parsed):
            is_last = i == len(parsed) - 1
            next_low = None if is_last else parsed[i + 1][0]
            if high is not None and high != next_low:
                raise RateTableLoadError(version, f"{where}: bracket {i} is not contiguous")
            if rate > 1:
                raise RateTableLoadError(version, f"{where}: rate {rate} above 100%")
            brackets.append(TERBracket(category, low, next_low, rate))

        _check_bracket_order(version, where, [(b.min_monthly_income, b.rate) for b in brackets])
        tables[category] = tuple(brackets)
    return tables


def _check_bracket_order(version: str, where: str, rows: list[tuple[Decimal, Decimal]]) -> None:
    if rows[0][0] != 0:
        raise RateTableLoadError(version, f"{where}: first bracket must start at 0")
    for (low, rate), (next_low, next_rate) in zip(rows, rows[1:]):
        if next_low <= low:
            raise RateTableLoadError(version, f"{where}: brackets not ascending at {next_low}")
        if next_rate < rate:
            raise RateTableLoadError(version, f"{where}: rate decreases at {next_low}")


def _parse_progressive(version: str, rows: Any) -> tuple[ProgressiveTaxBracket, ...]:
    if not isinstance(rows, list) or not rows:
        raise RateTableLoadError(version, "progressive_brackets must be a non-empty list")

    brackets = []
    for i, row in enumerate(rows):
        if not isinstance(row, dict):
            raise RateTableLoadError(version, f"progressive bracket {i} must be an object")
        low = _decimal(version, "progressive", row.get("min"))
        high = _optional_decimal(version, "progressive", row.get("max"))
        rate = _decimal(version, "progressive", row.get("rate"))
        is_last = i == len(rows) - 1
        if (high is None) != is_last:
            raise RateTableLoadError(version, "only the last progressive bracket may be open-ended")
        if not is_last and high != _decimal(version, "progressive", rows[i + 1].get("min")):
            raise RateTableLoadError(version, f"progressive bracket {i} is not contiguous")
        brackets.append(ProgressiveTaxBracket(low, high, rate))

    _check_bracket_order(version, "progressive", [(b.min_annual_income, b.rate) for b in brackets])
    return tuple(brackets)


def _parse_bpjs(version: str, rows: Any) -> tuple[BPJSProgramRate, ...]:
    if not isinstance(rows, list):
        raise RateTableLoadError(version, "bpjs must be a list")

    rates: dict[BPJSProgram, BPJSProgramRate] = {}
    for row in rows:
        if not isinstance(row, dict):
            raise RateTableLoadError(version, f"bad BPJS row {row!r}")
        name = row.get("program")
        try:
            program = BPJSProgram(name)
        except ValueError:
            raise UnsupportedProgram(name) from None
        if program in rates:
            raise RateTableLoadError(version, f"duplicate BPJS program {program.value}")
        where = f"BPJS {program.value}"
        cap = _optional_decimal(version, where, row.get("salary_cap"))
        if cap is not None and cap == 0:
            raise RateTableLoadError(version, f"{where}: salary cap must be positive")
        rates[program] = BPJSProgramRate(
            program=program,
            employee_rate=_decimal(version, where, row.get("employee_rate")),
            company_rate=_decimal(version, where, row.get("company_rate")),
            salary_cap=cap,
        )

    missing = [p.value for p in BPJSProgram if p not in rates]
    if missing:
        raise RateTableLoadError(version, f"missing BPJS programs {missing}")
    return tuple(rates[p] for p in BPJSProgram)


def parse_rate_table(payload: Mapping[str, Any]) -> RateTableSnapshot:
    """Validate a payload and build its snapshot.

    Raises:
        RateTableLoadError: If the payload is malformed or breaks a table invariant
        UnsupportedProgram: If a BPJS program name is unknown
    """
    if not isinstance(payload, Mapping):
        raise RateTableLoadError(None, "payload must be a JSON object")

    version = payload.get("version")
    if not version or not isinstance(version, str):
        raise RateTableLoadError(None, "missing version")
    try:
        effective_date = date.fromisoformat(str(payload.get("effective_date")))
    except ValueError:
        raise RateTableLoadError(version, "effective_date must be an ISO date") from None

    ptkp = _parse_ptkp(version, payload.get("ptkp_categories"))
    ter = _parse_ter_brackets(version, payload.get("ter_brackets"))

    category_map = payload.get("ter_category_map")
    if not isinstance(category_map, dict):
        raise RateTableLoadError(version, "ter_category_map must be a mapping")
    for code, category in category_map.items():
        if code not in ptkp:
            raise RateTableLoadError(version, f"ter_category_map references unknown PTKP {code}")
        if category not in ter:
            raise RateTableLoadError(version, f"TER category {category} for {code} has no table")

    surcharge = _decimal(version, "non_npwp_surcharge", payload.get("non_npwp_surcharge", "0"))

    return RateTableSnapshot(
        version=version,
        effective_date=effective_date,
        ptkp_categories=MappingProxyType(ptkp),
        ter_category_map=MappingProxyType(dict(category_map)),
        ter_brackets=MappingProxyType(ter),
        progressive_brackets=_parse_progressive(version, payload.get("progressive_brackets")),
        bpjs_rates=_parse_bpjs(version, payload.get("bpjs")),
        non_npwp_surcharge=surcharge,
        fingerprint=compute_fingerprint(payload),
        payload_json=canonical_json(payload),
    )


# ===== Store =====


class RateTableStore:
    """Set of rate-table snapshots ordered by effective date.

    Read-only once built, so a single store can be shared across worker
    threads.
    """

    def __init__(self, snapshots: Iterable[RateTableSnapshot] = ()):
        self._by_date: dict[date, RateTableSnapshot] = {}
        self._dates: list[date] = []
        for snapshot in snapshots:
            self.add(snapshot)

    def add(self, snapshot: RateTableSnapshot) -> None:
        existing = self._by_date.get(snapshot.effective_date)
        if existing is not None:
            if existing.fingerprint == snapshot.fingerprint:
                return
            raise RateTableLoadError(
                snapshot.version,
                f"conflicts with version '{existing.version}' effective {snapshot.effective_date}",
            )
        self._by_date[snapshot.effective_date] = snapshot
        bisect.insort(self._dates, snapshot.effective_date)

    def get(self, effective_date: date) -> RateTableSnapshot:
        """Return the snapshot in force on a date.

        Raises:
            RateTableNotFoundError: If every version starts after the date
        """
        idx = bisect.bisect_right(self._dates, effective_date)
        if idx == 0:
            raise RateTableNotFoundError(effective_date)
        return self._by_date[self._dates[idx - 1]]

    def for_period(self, period: str) -> RateTableSnapshot:
        return self.get(period_start(period))

    def versions(self) -> list[RateTableSnapshot]:
        return [self._by_date[d] for d in self._dates]

    def __len__(self) -> int:
        return len(self._dates)

    # ----- loaders -----

    @classmethod
    def from_payloads(cls, payloads: Iterable[Mapping[str, Any]]) -> RateTableStore:
        return cls(parse_rate_table(p) for p in payloads)

    @classmethod
    def bundled(cls) -> RateTableStore:
        """Store holding the tables shipped with the package."""
        store = cls()
        store.load_bundled()
        return store

    @classmethod
    def load(cls, directory: str | Path | None = None) -> RateTableStore:
        """Bundled tables plus any ``*.json`` tables found in ``directory``."""
        store = cls.bundled()
        if directory:
            store.load_directory(directory)
        return store

    @classmethod
    async def from_database(cls, session: AsyncSession) -> RateTableStore:
        """Store holding every persisted rate-table version."""
        from sqlalchemy import select

        from payroll_tax_engine.models import RateTableVersion

        result = await session.execute(
            select(RateTableVersion).order_by(RateTableVersion.effective_date)
        )
        store = cls()
        for row in result.scalars().all():
            snapshot = parse_rate_table(row.payload_json)
            if snapshot.fingerprint != row.fingerprint:
                raise RateTableLoadError(row.version, "stored fingerprint does not match payload")
            store.add(snapshot)
        logger.info("Loaded %d rate table(s) from database", len(store))
        return store

    async def persist(self, session: AsyncSession) -> int:
        """Store every snapshot not yet in the database; returns the number added.

        Raises:
            RateTableLoadError: If a stored version differs from the loaded one
        """
        from sqlalchemy import select

        from payroll_tax_engine.models import RateTableVersion

        added = 0
        for snapshot in self.versions():
            result = await session.execute(
                select(RateTableVersion).where(RateTableVersion.version == snapshot.version)
            )
            existing = result.scalar_one_or_none()
            if existing is not None:
                if existing.fingerprint != snapshot.fingerprint:
                    raise RateTableLoadError(
                        snapshot.version, "stored version differs from the loaded payload"
                    )
                continue
            payload = snapshot.to_payload()
            session.add(
                RateTableVersion(
                    version=snapshot.version,
                    effective_date=snapshot.effective_date,
                    description=payload.get("description"),
                    fingerprint=snapshot.fingerprint,
                    payload_json=payload,
                )
            )
            added += 1
            logger.info("Stored rate table %s", snapshot.version)
        await session.flush()
        return added

    def load_bundled(self) -> None:
        tables = resources.files("payroll_tax_engine") / "data" / "rate_tables"
        for entry in sorted(tables.iterdir(), key=lambda e: e.name):
            if entry.name.endswith(".json"):
                self._load_text(entry.name, entry.read_text(encoding="utf-8"))

    def load_directory(self, directory: str | Path) -> None:
        path = Path(directory)
        if not path.is_dir():
            raise RateTableLoadError(None, f"rate table directory {path} does not exist")
        for file in sorted(path.glob("*.json")):
            self._load_text(str(file), file.read_text(encoding="utf-8"))

    def _load_text(self, source: str, text: str) -> None:
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as e:
            raise RateTableLoadError(None, f"{source}: invalid JSON ({e})") from None
        snapshot = parse_rate_table(payload)
        self.add(snapshot)
        logger.info(
            "Loaded rate table %s (effective %s) from %s",
            snapshot.version,
            snapshot.effective_date,
            source,
        )
