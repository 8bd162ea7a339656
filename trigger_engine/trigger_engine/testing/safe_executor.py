"""Exercise a candidate trigger against the database and roll everything back."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from trigger_engine.introspection.catalog import DatabaseIntrospector
from trigger_engine.models.trigger import TriggerDefinition
from trigger_engine.sql.execution import execute_script
from trigger_engine.sql.quoting import quote_ident, quote_qualified
from trigger_engine.testing.dry_run import body_creates_trigger, render_create_trigger
from trigger_engine.testing.transactions import rollback_only

logger = logging.getLogger(__name__)


class ExecutionTestResult(BaseModel):
    success: bool = False
    function_created: bool = False
    trigger_created: bool = False
    test_insert_executed: bool = False
    errors: list[str] = Field(default_factory=list)
    output: list[str] = Field(default_factory=list)


class FunctionTestResult(BaseModel):
    success: bool = False
    function_created: bool = False
    errors: list[str] = Field(default_factory=list)
    output: list[str] = Field(default_factory=list)


def build_test_insert(table_name: str, test_data: dict[str, Any]) -> tuple[str, dict[str, Any]]:
    """Return a parameterised INSERT for *test_data* and its bind values."""
    columns = list(test_data)
    column_sql = ", ".join(quote_ident(col) for col in columns)
    placeholders = ", ".join(f":p{i}" for i in range(len(columns)))
    params = {f"p{i}": test_data[col] for i, col in enumerate(columns)}
    return f"INSERT INTO {quote_qualified(table_name)} ({column_sql}) VALUES ({placeholders})", params


class SafeExecutor:
    """Create the function and trigger, optionally insert a sample row, roll back."""

    def __init__(self, definition: TriggerDefinition, session: AsyncSession) -> None:
        self.definition = definition
        self._session = session

    async def test_execute(self, test_data: dict[str, Any] | None = None) -> ExecutionTestResult:
        d = self.definition
        result = ExecutionTestResult()
        try:
            async with rollback_only(self._session):
                if d.function_body:
                    await execute_script(self._session, d.function_body)
                    result.function_created = True
                    result.output.append("Function created (test mode)")
                    if body_creates_trigger(d.function_body):
                        result.trigger_created = True
                        result.output.append("Trigger created by function body (test mode)")

                if not result.trigger_created:
                    await execute_script(self._session, render_create_trigger(d))
                    result.trigger_created = True
                    result.output.append("Trigger created (test mode)")

                if test_data:
                    sql, params = build_test_insert(d.table_name, test_data)
                    await self._session.execute(text(sql), params)
                    result.test_insert_executed = True
                    result.output.append("Test insert executed successfully")
        except Exception as exc:  # noqa: BLE001
            logger.info("Safe execution of %s failed: %s", d.name, exc)
            result.errors.append(str(exc))

        result.success = not result.errors
        result.output.append("All changes rolled back (test mode)")
        return result


class FunctionTester:
    """Create only the function, check it registered, roll back."""

    def __init__(
        self,
        definition: TriggerDefinition,
        session: AsyncSession,
        introspector: DatabaseIntrospector | None = None,
    ) -> None:
        self.definition = definition
        self._session = session
        self._introspector = introspector or DatabaseIntrospector(session)

    async def test_function_only(self) -> FunctionTestResult:
        d = self.definition
        result = FunctionTestResult()
        if not d.function_body:
            result.errors.append("Function body is empty")
            return result

        try:
            async with rollback_only(self._session):
                await execute_script(self._session, d.function_body)
                result.output.append("Function DDL executed (test mode)")
                if d.function_name:
                    result.function_created = await self._introspector.function_exists(d.function_name)
                    if not result.function_created:
                        result.errors.append(f"Function '{d.function_name}' was not created by the function body")
        except Exception as exc:  # noqa: BLE001
            logger.info("Function test for %s failed: %s", d.name, exc)
            result.errors.append(str(exc))

        result.success = not result.errors
        result.output.append("All changes rolled back (test mode)")
        return result

    async def function_exists(self) -> bool:
        """Whether the definition's function exists in the live database."""
        if not self.definition.function_name:
            return False
        return await self._introspector.function_exists(self.definition.function_name)
