"""Table admin request/response messages."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class TableView(str, Enum):
    VIEW_UNSPECIFIED = "VIEW_UNSPECIFIED"
    NAME_ONLY = "NAME_ONLY"
    SCHEMA_VIEW = "SCHEMA_VIEW"
    REPLICATION_VIEW = "REPLICATION_VIEW"
    FULL = "FULL"


class TimestampGranularity(str, Enum):
    UNSPECIFIED = "TIMESTAMP_GRANULARITY_UNSPECIFIED"
    MILLIS = "MILLIS"


class Consistency(str, Enum):
    INCONSISTENT = "inconsistent"
    CONSISTENT = "consistent"


@dataclass(frozen=True)
class GcRule:
    max_num_versions: int = 0
    max_age_seconds: float = 0.0


@dataclass(frozen=True)
class Table:
    name: str
    granularity: TimestampGranularity = TimestampGranularity.MILLIS
    column_families: dict[str, GcRule] = field(default_factory=dict)


@dataclass(frozen=True)
class ListTablesRequest:
    parent: str
    view: TableView = TableView.NAME_ONLY
    page_token: str = ""


@dataclass(frozen=True)
class ListTablesResponse:
    tables: list[Table] = field(default_factory=list)
    next_page_token: str = ""


@dataclass(frozen=True)
class GetTableRequest:
    name: str
    view: TableView = TableView.SCHEMA_VIEW


@dataclass(frozen=True)
class CreateTableRequest:
    parent: str
    table_id: str
    table: Table


@dataclass(frozen=True)
class DeleteTableRequest:
    name: str


@dataclass(frozen=True)
class GenerateConsistencyTokenRequest:
    name: str


@dataclass(frozen=True)
class GenerateConsistencyTokenResponse:
    consistency_token: str


@dataclass(frozen=True)
class CheckConsistencyRequest:
    name: str
    consistency_token: str


@dataclass(frozen=True)
class CheckConsistencyResponse:
    consistent: bool = False


class ModificationAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DROP = "drop"


@dataclass(frozen=True)
class ColumnFamilyModification:
    id: str
    action: ModificationAction
    gc_rule: GcRule | None = None

    @classmethod
    def create(cls, family: str, gc_rule: GcRule) -> ColumnFamilyModification:
        return cls(family, ModificationAction.CREATE, gc_rule)

    @classmethod
    def update(cls, family: str, gc_rule: GcRule) -> ColumnFamilyModification:
        return cls(family, ModificationAction.UPDATE, gc_rule)

    @classmethod
    def drop(cls, family: str) -> ColumnFamilyModification:
        return cls(family, ModificationAction.DROP)


@dataclass(frozen=True)
class ModifyColumnFamiliesRequest:
    name: str
    modifications: list[ColumnFamilyModification] = field(default_factory=list)


@dataclass(frozen=True)
class DropRowRangeRequest:
    """Either ``row_key_prefix`` is set or ``delete_all_data_from_table`` is True."""

    name: str
    row_key_prefix: str = ""
    delete_all_data_from_table: bool = False


@dataclass(frozen=True)
class IamBinding:
    role: str
    members: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class IamPolicy:
    bindings: list[IamBinding] = field(default_factory=list)
    etag: str = ""
    version: int = 0


@dataclass(frozen=True)
class GetIamPolicyRequest:
    resource: str


@dataclass(frozen=True)
class SetIamPolicyRequest:
    resource: str
    policy: IamPolicy


@dataclass(frozen=True)
class TestIamPermissionsRequest:
    __test__ = False

    resource: str
    permissions: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class TestIamPermissionsResponse:
    __test__ = False

    permissions: list[str] = field(default_factory=list)
