"""
Schema Validation Module

Rule-based validation of row sets against the schema model. Validation never
raises: every failed check yields structured Violation records and the caller
decides whether to fail the run or quarantine rows.

Checks:
- Column presence and type compatibility
- Not-null on required columns
- Primary key uniqueness
- Value ranges on measures
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

import polars as pl
import structlog

from .models import ColumnSpec, TableSchema, get_schema

logger = structlog.get_logger(__name__)

# Row-level violations recorded per check; the check still counts every failing row
MAX_ROW_VIOLATIONS = 1000


class ValidationSeverity(str, Enum):
    """Severity levels for validation failures"""
    ERROR = "error"  # Blocks the run
    WARNING = "warning"  # Logged and reported, run continues


class ValidationStatus(str, Enum):
    """Overall validation status"""
    PASSED = "passed"
    FAILED = "failed"
    PARTIAL = "partial"


@dataclass(frozen=True)
class Violation:
    """A single schema or key violation"""
    entity: str
    key: Any
    reason: str
    column: Optional[str] = None
    severity: ValidationSeverity = ValidationSeverity.ERROR

    def to_dict(self) -> Dict[str, Any]:
        key = list(self.key) if isinstance(self.key, tuple) else self.key
        return {
            "entity": self.entity,
            "key": key,
            "reason": self.reason,
            "column": self.column,
            "severity": self.severity.value,
        }


@dataclass(frozen=True)
class ReferentialGap:
    """A row whose foreign key cannot be resolved against its parent entity"""
    entity: str
    key: Any
    reference: str
    reference_key: Any
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        key = list(self.key) if isinstance(self.key, tuple) else self.key
        return {
            "entity": self.entity,
            "key": key,
            "reference": self.reference,
            "reference_key": self.reference_key,
            "reason": self.reason,
        }


@dataclass
class ValidationCheck:
    """Single validation check result"""
    name: str
    passed: bool
    severity: ValidationSeverity
    message: str
    violations: List[Violation] = field(default_factory=list)
    failed_rows: int = 0
    total_rows: int = 0


@dataclass
class ValidationResult:
    """Complete validation suite result"""
    entity: str
    status: ValidationStatus
    checks: List[ValidationCheck] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    @property
    def violations(self) -> List[Violation]:
        return [v for c in self.checks for v in c.violations]

    @property
    def errors(self) -> List[Violation]:
        return [v for v in self.violations if v.severity == ValidationSeverity.ERROR]

    @property
    def passed(self) -> bool:
        return self.status != ValidationStatus.FAILED


def dtype_compatible(expected: pl.DataType, actual: pl.DataType) -> bool:
    """
    Whether a column of ``actual`` type can be conformed to ``expected``.

    Precision is not compared here; the column check reports the individual
    values that do not fit the declared type.
    """
    if actual == pl.Null:
        # all-null column, e.g. an empty optional field
        return True
    if isinstance(expected, pl.Decimal):
        if isinstance(actual, pl.Decimal):
            return actual.scale is None or expected.scale is None or actual.scale <= expected.scale
        return actual.is_integer()
    if expected.is_integer():
        return actual.is_integer()
    if expected == pl.Utf8:
        return actual in (pl.Utf8, pl.Categorical)
    return actual == expected


class SchemaValidator:
    """
    Validator for one table of the schema model.

    Example:
        validator = SchemaValidator.for_schema(ORDER_DETAILS)
        result = validator.validate(df)
        if result.errors:
            raise SchemaMismatch("orderdetails", result.errors)
    """

    def __init__(self, schema: TableSchema):
        self.schema = schema
        self._checks: List[Callable[[pl.DataFrame], ValidationCheck]] = []

    @classmethod
    def for_schema(cls, schema: TableSchema) -> "SchemaValidator":
        """Validator with the structural checks every table gets."""
        validator = cls(schema).add_column_check()
        for column in schema.required:
            validator.add_not_null_check(column)
        return validator.add_unique_check(schema.primary_key)

    def _keys(self, df: pl.DataFrame) -> List[Any]:
        key_columns = [c for c in self.schema.primary_key if c in df.columns]
        if not key_columns:
            return [None] * df.height
        if len(key_columns) == 1:
            return df[key_columns[0]].to_list()
        return list(df.select(key_columns).iter_rows())

    def _missing(self, name: str, column: str, severity: ValidationSeverity) -> ValidationCheck:
        # Reported as a violation by the column check
        return ValidationCheck(
            name=name,
            passed=False,
            severity=severity,
            message=f"Column '{column}' not found",
        )

    def _unrepresentable(self, df: pl.DataFrame, spec: ColumnSpec) -> List[Violation]:
        # A lenient cast turns values that do not fit the declared type into nulls
        values = df[spec.name]
        mask = values.is_not_null() & values.cast(spec.dtype, strict=False).is_null()
        keys = [k for k, bad in zip(self._keys(df), mask.to_list()) if bad]
        return [
            Violation(
                self.schema.name, key,
                f"'{spec.name}' value does not fit {spec.dtype}", column=spec.name,
            )
            for key in keys[:MAX_ROW_VIOLATIONS]
        ]

    def add_column_check(self) -> "SchemaValidator":
        """Add check that every declared column is present with a compatible type"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            violations = []
            for spec in self.schema.columns:
                if spec.name not in df.columns:
                    violations.append(Violation(
                        self.schema.name, None, f"missing column '{spec.name}'", column=spec.name,
                    ))
                elif not dtype_compatible(spec.dtype, df.schema[spec.name]):
                    violations.append(Violation(
                        self.schema.name,
                        None,
                        f"column '{spec.name}' has type {df.schema[spec.name]}, expected {spec.dtype}",
                        column=spec.name,
                    ))
                elif df.schema[spec.name] != spec.dtype:
                    violations.extend(self._unrepresentable(df, spec))
            return ValidationCheck(
                name="columns",
                passed=not violations,
                severity=ValidationSeverity.ERROR,
                message=f"{len(violations)} column problems" if violations else "All columns present",
                violations=violations,
                total_rows=df.height,
            )

        self._checks.append(check)
        return self

    def add_not_null_check(
        self,
        column: str,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "SchemaValidator":
        """Add check for null values in column"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            if column not in df.columns:
                return self._missing(f"not_null_{column}", column, severity)

            mask = df[column].is_null()
            null_count = int(mask.sum())
            keys = [k for k, is_null in zip(self._keys(df), mask.to_list()) if is_null]
            violations = [
                Violation(self.schema.name, key, f"null value in required column '{column}'", column, severity)
                for key in keys[:MAX_ROW_VIOLATIONS]
            ]
            return ValidationCheck(
                name=f"not_null_{column}",
                passed=null_count == 0,
                severity=severity,
                message=f"Column '{column}' has {null_count} null values" if null_count else f"Column '{column}' has no null values",
                violations=violations,
                failed_rows=null_count,
                total_rows=df.height,
            )

        self._checks.append(check)
        return self

    def add_unique_check(
        self,
        columns: Sequence[str],
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "SchemaValidator":
        """Add check for uniqueness of a (possibly composite) key"""
        columns = list(columns)
        name = f"unique_{'_'.join(columns)}"

        def check(df: pl.DataFrame) -> ValidationCheck:
            missing = [c for c in columns if c not in df.columns]
            if missing:
                return self._missing(name, missing[0], severity)

            duplicated = df.select(columns).is_duplicated()
            duplicates = df.filter(duplicated).select(columns).unique(maintain_order=True)
            keys = duplicates.to_series().to_list() if len(columns) == 1 else list(duplicates.iter_rows())
            violations = [
                Violation(self.schema.name, key, f"duplicate key {key!r}", None, severity)
                for key in keys[:MAX_ROW_VIOLATIONS]
            ]
            return ValidationCheck(
                name=name,
                passed=not keys,
                severity=severity,
                message=f"{len(keys)} duplicate keys" if keys else "Key values are unique",
                violations=violations,
                failed_rows=int(duplicated.sum()),
                total_rows=df.height,
            )

        self._checks.append(check)
        return self

    def add_range_check(
        self,
        column: str,
        min_value: Optional[float] = None,
        max_value: Optional[float] = None,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "SchemaValidator":
        """Add check for values within specified range"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            if column not in df.columns:
                return self._missing(f"range_{column}", column, severity)
            if not df.schema[column].is_numeric() or (min_value is None and max_value is None):
                return ValidationCheck(
                    name=f"range_{column}",
                    passed=True,
                    severity=severity,
                    message="No range applicable",
                )

            value = pl.col(column).cast(pl.Float64)
            condition = pl.lit(False)
            if min_value is not None:
                condition = condition | (value < min_value)
            if max_value is not None:
                condition = condition | (value > max_value)
            mask = df.select(condition.fill_null(False).alias("out_of_range")).to_series()

            out_of_range = int(mask.sum())
            keys = [k for k, bad in zip(self._keys(df), mask.to_list()) if bad]
            violations = [
                Violation(
                    self.schema.name, key,
                    f"'{column}' outside range [{min_value}, {max_value}]", column, severity,
                )
                for key in keys[:MAX_ROW_VIOLATIONS]
            ]
            return ValidationCheck(
                name=f"range_{column}",
                passed=out_of_range == 0,
                severity=severity,
                message=f"Column '{column}' has {out_of_range} values outside range" if out_of_range else "All values in range",
                violations=violations,
                failed_rows=out_of_range,
                total_rows=df.height,
            )

        self._checks.append(check)
        return self

    def validate(self, df: pl.DataFrame) -> ValidationResult:
        """
        Run all validation checks on DataFrame.

        Args:
            df: DataFrame to validate

        Returns:
            ValidationResult with all check results
        """
        result = ValidationResult(entity=self.schema.name, status=ValidationStatus.PASSED)

        for check_func in self._checks:
            check = check_func(df)
            result.checks.append(check)

            if not check.passed:
                logger.warning(
                    "Validation check failed",
                    entity=self.schema.name,
                    check=check.name,
                    message=check.message,
                    severity=check.severity.value,
                )

        failed = any(not c.passed and c.severity == ValidationSeverity.ERROR for c in result.checks)
        warned = any(not c.passed and c.severity == ValidationSeverity.WARNING for c in result.checks)
        if failed:
            result.status = ValidationStatus.FAILED
        elif warned:
            result.status = ValidationStatus.PARTIAL
        result.completed_at = datetime.utcnow()

        logger.debug(
            "Validation complete",
            entity=self.schema.name,
            status=result.status.value,
            rows=df.height,
        )
        return result


def create_validator(name: str) -> SchemaValidator:
    """Create the pre-configured validator for a source or target table"""
    validator = SchemaValidator.for_schema(get_schema(name))
    if name == "orderdetails":
        validator.add_range_check("quantityOrdered", min_value=0)
        validator.add_range_check("priceEach", min_value=0)
    elif name == "products":
        validator.add_range_check("buyPrice", min_value=0, severity=ValidationSeverity.WARNING)
        validator.add_range_check("MSRP", min_value=0, severity=ValidationSeverity.WARNING)
    elif name == "fact_orders":
        validator.add_range_check("quantity", min_value=0)
    return validator


def validate(name: str, df: pl.DataFrame) -> List[Violation]:
    """
    Validate a row set against the named table's schema.

    Returns:
        All violations found; empty when the row set conforms.
    """
    return create_validator(name).validate(df).violations
