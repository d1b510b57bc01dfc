"""Table admin client built on the retry and poll engine."""

from __future__ import annotations

import logging as py_logging
import time
from collections.abc import Callable, Mapping, Sequence
from typing import Protocol, TypeVar

from rpcretry.backoff import ExponentialBackoffPolicy
from rpcretry.completion_queue import CompletionQueue
from rpcretry.config import ClientConfig
from rpcretry.errors import ConfigurationError, StatusCode
from rpcretry.future import ResultFuture
from rpcretry.messages import (
    CheckConsistencyRequest,
    CheckConsistencyResponse,
    ColumnFamilyModification,
    Consistency,
    CreateTableRequest,
    DeleteTableRequest,
    DropRowRangeRequest,
    GcRule,
    GenerateConsistencyTokenRequest,
    GenerateConsistencyTokenResponse,
    GetIamPolicyRequest,
    GetTableRequest,
    IamPolicy,
    ListTablesRequest,
    ListTablesResponse,
    ModifyColumnFamiliesRequest,
    SetIamPolicyRequest,
    Table,
    TableView,
    TestIamPermissionsRequest,
    TestIamPermissionsResponse,
    TimestampGranularity,
)
from rpcretry.pagination import list_all_pages, start_list_all_pages
from rpcretry.poll import start_async_retry, start_poll
from rpcretry.retry import RetryPolicy, call_with_retry
from rpcretry.rpc import CallContext, UnaryRpc, context_factory, routing_metadata

T = TypeVar("T")
RequestT = TypeVar("RequestT")

logger = py_logging.getLogger(__name__)


class TableAdminStub(Protocol):
    def list_tables(self, request: ListTablesRequest, context: CallContext) -> ListTablesResponse: ...

    def get_table(self, request: GetTableRequest, context: CallContext) -> Table: ...

    def create_table(self, request: CreateTableRequest, context: CallContext) -> Table: ...

    def delete_table(self, request: DeleteTableRequest, context: CallContext) -> None: ...

    def generate_consistency_token(
        self,
        request: GenerateConsistencyTokenRequest,
        context: CallContext,
    ) -> GenerateConsistencyTokenResponse: ...

    def check_consistency(
        self,
        request: CheckConsistencyRequest,
        context: CallContext,
    ) -> CheckConsistencyResponse: ...

    def modify_column_families(
        self,
        request: ModifyColumnFamiliesRequest,
        context: CallContext,
    ) -> Table: ...

    def drop_row_range(self, request: DropRowRangeRequest, context: CallContext) -> None: ...

    def get_iam_policy(self, request: GetIamPolicyRequest, context: CallContext) -> IamPolicy: ...

    def set_iam_policy(self, request: SetIamPolicyRequest, context: CallContext) -> IamPolicy: ...

    def test_iam_permissions(
        self,
        request: TestIamPermissionsRequest,
        context: CallContext,
    ) -> TestIamPermissionsResponse: ...


def _consistency_of(response: CheckConsistencyResponse) -> Consistency:
    return Consistency.CONSISTENT if response.consistent else Consistency.INCONSISTENT


class TableAdmin:
    """Administrative operations on the tables of one instance.

    Idempotent calls are retried with the configured policies. Calls that
    change a table's existence, schema or rows are attempted once. Methods
    that retry accept ``retry_policy`` and ``backoff_policy`` overrides, which
    are used as prototypes like the defaults.

    Every blocking method has an ``async_`` twin that takes a
    ``CompletionQueue`` and returns a ``ResultFuture`` immediately.
    """

    def __init__(
        self,
        stub: TableAdminStub,
        project: str,
        instance_id: str,
        *,
        config: ClientConfig | None = None,
        retry_policy: RetryPolicy | None = None,
        backoff_policy: ExponentialBackoffPolicy | None = None,
        polling_policy: RetryPolicy | None = None,
        polling_backoff_policy: ExponentialBackoffPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not project.strip() or not instance_id.strip():
            raise ConfigurationError(
                "Project and instance id are required.",
                code=StatusCode.INVALID_ARGUMENT,
                hint="Pass non-empty project and instance identifiers.",
            )
        self.config = config or ClientConfig()
        self.project = project.strip()
        self.instance_id = instance_id.strip()
        self._stub = stub
        self._retry_policy = retry_policy or self.config.retry_policy()
        self._backoff_policy = backoff_policy or self.config.backoff_policy()
        self._polling_policy = polling_policy or self.config.polling_policy()
        self._polling_backoff_policy = polling_backoff_policy or self.config.polling_backoff_policy()
        self._sleep = sleep

    def instance_name(self) -> str:
        return f"projects/{self.project}/instances/{self.instance_id}"

    def table_name(self, table_id: str) -> str:
        return f"{self.instance_name()}/tables/{table_id}"

    def _contexts(self, resource_param: str) -> Callable[[], CallContext]:
        return context_factory(self.config.rpc_timeout_seconds, routing_metadata(resource_param))

    def _call(
        self,
        rpc: UnaryRpc[RequestT, T],
        request: RequestT,
        *,
        resource_param: str,
        name: str,
        idempotent: bool,
        retry_policy: RetryPolicy | None,
        backoff_policy: ExponentialBackoffPolicy | None,
    ) -> T:
        return call_with_retry(
            rpc,
            request,
            make_context=self._contexts(resource_param),
            retry_policy=retry_policy or self._retry_policy,
            backoff_policy=backoff_policy or self._backoff_policy,
            idempotent=idempotent,
            sleep=self._sleep,
            name=name,
        )

    def _async_call(
        self,
        cq: CompletionQueue,
        rpc: UnaryRpc[RequestT, T],
        request: RequestT,
        *,
        resource_param: str,
        name: str,
        idempotent: bool,
        retry_policy: RetryPolicy | None,
        backoff_policy: ExponentialBackoffPolicy | None,
    ) -> ResultFuture[T]:
        make_context = self._contexts(resource_param)
        return start_async_retry(
            cq,
            lambda: rpc(request, make_context()),
            retry_policy=retry_policy or self._retry_policy,
            backoff_policy=backoff_policy or self._backoff_policy,
            idempotent=idempotent,
            name=name,
        )

    def _list_tables_page(self, view: TableView) -> Callable[[str], tuple[list[Table], str]]:
        parent = self.instance_name()
        make_context = self._contexts(f"parent={parent}")

        def _fetch(page_token: str) -> tuple[list[Table], str]:
            request = ListTablesRequest(parent=parent, view=view, page_token=page_token)
            response = self._stub.list_tables(request, make_context())
            return list(response.tables), response.next_page_token

        return _fetch

    def list_tables(
        self,
        view: TableView = TableView.NAME_ONLY,
        *,
        retry_policy: RetryPolicy | None = None,
        backoff_policy: ExponentialBackoffPolicy | None = None,
    ) -> list[Table]:
        return list_all_pages(
            self._list_tables_page(view),
            retry_policy=retry_policy or self._retry_policy,
            backoff_policy=backoff_policy or self._backoff_policy,
            sleep=self._sleep,
            name="ListTables",
        )

    def get_table(
        self,
        table_id: str,
        view: TableView = TableView.SCHEMA_VIEW,
        *,
        retry_policy: RetryPolicy | None = None,
        backoff_policy: ExponentialBackoffPolicy | None = None,
    ) -> Table:
        name = self.table_name(table_id)
        return self._call(
            self._stub.get_table,
            GetTableRequest(name=name, view=view),
            resource_param=f"name={name}",
            name="GetTable",
            idempotent=True,
            retry_policy=retry_policy,
            backoff_policy=backoff_policy,
        )

    def _create_table_request(
        self,
        table_id: str,
        column_families: Mapping[str, GcRule] | None,
        granularity: TimestampGranularity,
    ) -> CreateTableRequest:
        table = Table(
            name="",
            granularity=granularity,
            column_families=dict(column_families or {}),
        )
        return CreateTableRequest(parent=self.instance_name(), table_id=table_id, table=table)

    def create_table(
        self,
        table_id: str,
        column_families: Mapping[str, GcRule] | None = None,
        *,
        granularity: TimestampGranularity = TimestampGranularity.MILLIS,
    ) -> Table:
        return self._call(
            self._stub.create_table,
            self._create_table_request(table_id, column_families, granularity),
            resource_param=f"parent={self.instance_name()}",
            name="CreateTable",
            idempotent=False,
            retry_policy=None,
            backoff_policy=None,
        )

    def delete_table(self, table_id: str) -> None:
        name = self.table_name(table_id)
        self._call(
            self._stub.delete_table,
            DeleteTableRequest(name=name),
            resource_param=f"name={name}",
            name="DeleteTable",
            idempotent=False,
            retry_policy=None,
            backoff_policy=None,
        )
        logger.info("table-deleted name=%s", name)

    def modify_column_families(
        self,
        table_id: str,
        modifications: Sequence[ColumnFamilyModification],
    ) -> Table:
        """Apply column family changes in order and return the resulting schema."""
        name = self.table_name(table_id)
        return self._call(
            self._stub.modify_column_families,
            ModifyColumnFamiliesRequest(name=name, modifications=list(modifications)),
            resource_param=f"name={name}",
            name="ModifyColumnFamilies",
            idempotent=False,
            retry_policy=None,
            backoff_policy=None,
        )

    def drop_rows_by_prefix(self, table_id: str, row_key_prefix: str) -> None:
        name = self.table_name(table_id)
        self._call(
            self._stub.drop_row_range,
            DropRowRangeRequest(name=name, row_key_prefix=row_key_prefix),
            resource_param=f"name={name}",
            name="DropRowsByPrefix",
            idempotent=False,
            retry_policy=None,
            backoff_policy=None,
        )

    def drop_all_rows(self, table_id: str) -> None:
        name = self.table_name(table_id)
        self._call(
            self._stub.drop_row_range,
            DropRowRangeRequest(name=name, delete_all_data_from_table=True),
            resource_param=f"name={name}",
            name="DropAllRows",
            idempotent=False,
            retry_policy=None,
            backoff_policy=None,
        )
        logger.info("table-rows-dropped name=%s", name)

    def generate_consistency_token(
        self,
        table_id: str,
        *,
        retry_policy: RetryPolicy | None = None,
        backoff_policy: ExponentialBackoffPolicy | None = None,
    ) -> str:
        name = self.table_name(table_id)
        response = self._call(
            self._stub.generate_consistency_token,
            GenerateConsistencyTokenRequest(name=name),
            resource_param=f"name={name}",
            name="GenerateConsistencyToken",
            idempotent=True,
            retry_policy=retry_policy,
            backoff_policy=backoff_policy,
        )
        return response.consistency_token

    def check_consistency(
        self,
        table_id: str,
        consistency_token: str,
        *,
        retry_policy: RetryPolicy | None = None,
        backoff_policy: ExponentialBackoffPolicy | None = None,
    ) -> Consistency:
        name = self.table_name(table_id)
        response = self._call(
            self._stub.check_consistency,
            CheckConsistencyRequest(name=name, consistency_token=consistency_token),
            resource_param=f"name={name}",
            name="CheckConsistency",
            idempotent=True,
            retry_policy=retry_policy,
            backoff_policy=backoff_policy,
        )
        return _consistency_of(response)

    def get_iam_policy(
        self,
        table_id: str,
        *,
        retry_policy: RetryPolicy | None = None,
        backoff_policy: ExponentialBackoffPolicy | None = None,
    ) -> IamPolicy:
        resource = self.table_name(table_id)
        return self._call(
            self._stub.get_iam_policy,
            GetIamPolicyRequest(resource=resource),
            resource_param=f"resource={resource}",
            name="GetIamPolicy",
            idempotent=True,
            retry_policy=retry_policy,
            backoff_policy=backoff_policy,
        )

    def set_iam_policy(
        self,
        table_id: str,
        policy: IamPolicy,
        *,
        retry_policy: RetryPolicy | None = None,
        backoff_policy: ExponentialBackoffPolicy | None = None,
    ) -> IamPolicy:
        """Replace the table's policy; the server rejects a stale ``etag``."""
        resource = self.table_name(table_id)
        return self._call(
            self._stub.set_iam_policy,
            SetIamPolicyRequest(resource=resource, policy=policy),
            resource_param=f"resource={resource}",
            name="SetIamPolicy",
            idempotent=True,
            retry_policy=retry_policy,
            backoff_policy=backoff_policy,
        )

    def test_iam_permissions(
        self,
        table_id: str,
        permissions: Sequence[str],
        *,
        retry_policy: RetryPolicy | None = None,
        backoff_policy: ExponentialBackoffPolicy | None = None,
    ) -> list[str]:
        """Return the subset of ``permissions`` the caller holds on the table."""
        resource = self.table_name(table_id)
        response = self._call(
            self._stub.test_iam_permissions,
            TestIamPermissionsRequest(resource=resource, permissions=list(permissions)),
            resource_param=f"resource={resource}",
            name="TestIamPermissions",
            idempotent=True,
            retry_policy=retry_policy,
            backoff_policy=backoff_policy,
        )
        return list(response.permissions)

    def async_list_tables(
        self,
        cq: CompletionQueue,
        view: TableView = TableView.NAME_ONLY,
        *,
        retry_policy: RetryPolicy | None = None,
        backoff_policy: ExponentialBackoffPolicy | None = None,
    ) -> ResultFuture[list[Table]]:
        return start_list_all_pages(
            cq,
            self._list_tables_page(view),
            retry_policy=retry_policy or self._retry_policy,
            backoff_policy=backoff_policy or self._backoff_policy,
            name="ListTables",
        )

    def async_create_table(
        self,
        cq: CompletionQueue,
        table_id: str,
        column_families: Mapping[str, GcRule] | None = None,
        *,
        granularity: TimestampGranularity = TimestampGranularity.MILLIS,
    ) -> ResultFuture[Table]:
        return self._async_call(
            cq,
            self._stub.create_table,
            self._create_table_request(table_id, column_families, granularity),
            resource_param=f"parent={self.instance_name()}",
            name="CreateTable",
            idempotent=False,
            retry_policy=None,
            backoff_policy=None,
        )

    def async_delete_table(self, cq: CompletionQueue, table_id: str) -> ResultFuture[None]:
        name = self.table_name(table_id)
        return self._async_call(
            cq,
            self._stub.delete_table,
            DeleteTableRequest(name=name),
            resource_param=f"name={name}",
            name="DeleteTable",
            idempotent=False,
            retry_policy=None,
            backoff_policy=None,
        )

    def async_modify_column_families(
        self,
        cq: CompletionQueue,
        table_id: str,
        modifications: Sequence[ColumnFamilyModification],
    ) -> ResultFuture[Table]:
        name = self.table_name(table_id)
        return self._async_call(
            cq,
            self._stub.modify_column_families,
            ModifyColumnFamiliesRequest(name=name, modifications=list(modifications)),
            resource_param=f"name={name}",
            name="ModifyColumnFamilies",
            idempotent=False,
            retry_policy=None,
            backoff_policy=None,
        )

    def async_drop_rows_by_prefix(
        self, cq: CompletionQueue, table_id: str, row_key_prefix: str
    ) -> ResultFuture[None]:
        name = self.table_name(table_id)
        return self._async_call(
            cq,
            self._stub.drop_row_range,
            DropRowRangeRequest(name=name, row_key_prefix=row_key_prefix),
            resource_param=f"name={name}",
            name="DropRowsByPrefix",
            idempotent=False,
            retry_policy=None,
            backoff_policy=None,
        )

    def async_drop_all_rows(self, cq: CompletionQueue, table_id: str) -> ResultFuture[None]:
        name = self.table_name(table_id)
        return self._async_call(
            cq,
            self._stub.drop_row_range,
            DropRowRangeRequest(name=name, delete_all_data_from_table=True),
            resource_param=f"name={name}",
            name="DropAllRows",
            idempotent=False,
            retry_policy=None,
            backoff_policy=None,
        )

    def async_generate_consistency_token(
        self,
        cq: CompletionQueue,
        table_id: str,
        *,
        retry_policy: RetryPolicy | None = None,
        backoff_policy: ExponentialBackoffPolicy | None = None,
    ) -> ResultFuture[str]:
        name = self.table_name(table_id)
        future = self._async_call(
            cq,
            self._stub.generate_consistency_token,
            GenerateConsistencyTokenRequest(name=name),
            resource_param=f"name={name}",
            name="GenerateConsistencyToken",
            idempotent=True,
            retry_policy=retry_policy,
            backoff_policy=backoff_policy,
        )
        return future.then(lambda response: response.consistency_token)

    def _check_consistency_call(
        self, table_id: str, consistency_token: str
    ) -> Callable[[], CheckConsistencyResponse]:
        name = self.table_name(table_id)
        request = CheckConsistencyRequest(name=name, consistency_token=consistency_token)
        make_context = self._contexts(f"name={name}")
        return lambda: self._stub.check_consistency(request, make_context())

    def async_check_consistency(
        self,
        cq: CompletionQueue,
        table_id: str,
        consistency_token: str,
        *,
        retry_policy: RetryPolicy | None = None,
        backoff_policy: ExponentialBackoffPolicy | None = None,
    ) -> ResultFuture[Consistency]:
        future = start_async_retry(
            cq,
            self._check_consistency_call(table_id, consistency_token),
            retry_policy=retry_policy or self._retry_policy,
            backoff_policy=backoff_policy or self._backoff_policy,
            name="CheckConsistency",
        )
        return future.then(_consistency_of)

    def wait_for_consistency(
        self,
        cq: CompletionQueue,
        table_id: str,
        consistency_token: str,
        *,
        polling_policy: RetryPolicy | None = None,
        backoff_policy: ExponentialBackoffPolicy | None = None,
    ) -> ResultFuture[Consistency]:
        """Poll until every write before ``consistency_token`` is visible.

        Returns immediately; the future resolves to ``Consistency.CONSISTENT``
        or to the terminal error of the poll.
        """
        logger.debug(
            "wait-for-consistency table=%s token=%s", self.table_name(table_id), consistency_token
        )
        future = start_poll(
            cq,
            self._check_consistency_call(table_id, consistency_token),
            lambda response: response.consistent,
            retry_policy=polling_policy or self._polling_policy,
            backoff_policy=backoff_policy or self._polling_backoff_policy,
            name="WaitForConsistency",
        )
        return future.then(_consistency_of)

    def async_get_iam_policy(
        self,
        cq: CompletionQueue,
        table_id: str,
        *,
        retry_policy: RetryPolicy | None = None,
        backoff_policy: ExponentialBackoffPolicy | None = None,
    ) -> ResultFuture[IamPolicy]:
        resource = self.table_name(table_id)
        return self._async_call(
            cq,
            self._stub.get_iam_policy,
            GetIamPolicyRequest(resource=resource),
            resource_param=f"resource={resource}",
            name="GetIamPolicy",
            idempotent=True,
            retry_policy=retry_policy,
            backoff_policy=backoff_policy,
        )

    def async_set_iam_policy(
        self,
        cq: CompletionQueue,
        table_id: str,
        policy: IamPolicy,
        *,
        retry_policy: RetryPolicy | None = None,
        backoff_policy: ExponentialBackoffPolicy | None = None,
    ) -> ResultFuture[IamPolicy]:
        resource = self.table_name(table_id)
        return self._async_call(
            cq,
            self._stub.set_iam_policy,
            SetIamPolicyRequest(resource=resource, policy=policy),
            resource_param=f"resource={resource}",
            name="SetIamPolicy",
            idempotent=True,
            retry_policy=retry_policy,
            backoff_policy=backoff_policy,
        )

    def async_test_iam_permissions(
        self,
        cq: CompletionQueue,
        table_id: str,
        permissions: Sequence[str],
        *,
        retry_policy: RetryPolicy | None = None,
        backoff_policy: ExponentialBackoffPolicy | None = None,
    ) -> ResultFuture[list[str]]:
        resource = self.table_name(table_id)
        future = self._async_call(
            cq,
            self._stub.test_iam_permissions,
            TestIamPermissionsRequest(resource=resource, permissions=list(permissions)),
            resource_param=f"resource={resource}",
            name="TestIamPermissions",
            idempotent=True,
            retry_policy=retry_policy,
            backoff_policy=backoff_policy,
        )
        return future.then(lambda response: list(response.permissions))
