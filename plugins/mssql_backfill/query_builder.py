"""
Query Builder Module

Derives the three T-SQL statements used for every keyset batch:

1. Limit discovery: scans only the key columns of the next batch and
   returns the key of its last row plus the batch row count.
2. Batch fetch: full projection for rows with start < key <= end.
3. Last row: full projection for the single row whose key equals end.

Composite keys are compared lexicographically. SQL Server has no row-value
comparison, so (A, B) > (a, b) is expanded to (A > a) OR (A = a AND B > b).

Statement construction is pure: the same spec state always yields the
same SQL text and parameters.
"""

from typing import Any, List, Optional, Sequence, Tuple
import logging

from mssql_backfill.errors import ConfigurationError
from mssql_backfill.relation import JoinKind

logger = logging.getLogger(__name__)

SOURCE_ALIAS = 'src'
RELATED_ALIAS = 'rl'
LIMIT_ALIAS = 'lim'
BATCH_ROWS_COLUMN = '_batch_rows'

JOIN_KEYWORDS = {
    JoinKind.INNER: 'INNER JOIN',
    JoinKind.OUTER: 'LEFT OUTER JOIN',
}


def quote_identifier(name: str) -> str:
    """Bracket-quote a SQL Server identifier, escaping embedded brackets."""
    return '[' + name.replace(']', ']]') + ']'


def column_ref(alias: str, name: str) -> str:
    return f"{alias}.{quote_identifier(name)}"


def tuple_comparison(column_refs: Sequence[str], op: str) -> str:
    """
    Lexicographic comparison of a column tuple against placeholders.

    Every column but the last is compared strictly; the last one uses op,
    so '<=' yields an inclusive and '>' an exclusive bound.

    Example:
        tuple_comparison(['A', 'B'], '>')
        -> "(A > ?) OR (A = ? AND B > ?)"
    """
    if op not in ('>', '>=', '<', '<='):
        raise ValueError(f"Unsupported comparison operator: {op}")

    strict = op[0]
    count = len(column_refs)
    terms = []
    for i, ref in enumerate(column_refs):
        parts = [f"{prefix} = ?" for prefix in column_refs[:i]]
        parts.append(f"{ref} {op if i == count - 1 else strict} ?")
        terms.append(' AND '.join(parts))

    if count == 1:
        return terms[0]
    return ' OR '.join(f"({term})" for term in terms)


def tuple_comparison_params(values: Sequence[Any]) -> List[Any]:
    """Parameters matching the placeholders of tuple_comparison()."""
    params: List[Any] = []
    for i in range(len(values)):
        params.extend(values[:i])
        params.append(values[i])
    return params


class BatchQueries:
    """
    Statements for one batch.

    limit_params are complete at build time. The batch and last-row
    statements need the end tuple discovered by the limit statement, so
    their parameters come from batch_params(end_key) / last_row_params(end_key).
    """

    def __init__(
        self,
        limit_sql: str,
        limit_params: List[Any],
        batch_sql: str,
        last_row_sql: str,
        start_key: Tuple[Any, ...],
        partition_number: Optional[int],
        batch_size: int,
        key_column_names: List[str],
    ):
        self.limit_sql = limit_sql
        self.limit_params = limit_params
        self.batch_sql = batch_sql
        self.last_row_sql = last_row_sql
        self.start_key = start_key
        self.partition_number = partition_number
        self.batch_size = batch_size
        self.key_column_names = key_column_names

    def _check_end_key(self, end_key: Sequence[Any]) -> Tuple[Any, ...]:
        end_key = tuple(end_key)
        if len(end_key) != len(self.key_column_names):
            raise ConfigurationError(
                f"End key has {len(end_key)} values, expected {len(self.key_column_names)}"
            )
        return end_key

    def batch_params(self, end_key: Sequence[Any]) -> List[Any]:
        end_key = self._check_end_key(end_key)
        return list(self.limit_params) + tuple_comparison_params(end_key)

    def last_row_params(self, end_key: Sequence[Any]) -> List[Any]:
        return list(self._check_end_key(end_key))

    def _astuple(self):
        return (
            self.limit_sql,
            tuple(self.limit_params),
            self.batch_sql,
            self.last_row_sql,
            self.start_key,
            self.partition_number,
            self.batch_size,
            tuple(self.key_column_names),
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, BatchQueries):
            return NotImplemented
        return self._astuple() == other._astuple()

    def __repr__(self) -> str:
        return (
            f"BatchQueries(start_key={self.start_key!r}, partition={self.partition_number}, "
            f"batch_size={self.batch_size})"
        )


class QueryBuilder:
    """Build keyset statements from a key-range spec, its projection and relation."""

    def __init__(self, spec):
        self.spec = spec

    def _table_source(self, table, alias: str) -> str:
        hint = self.spec.table_hint
        hint_sql = f" WITH ({hint})" if hint else ""
        return f"{table.full_name} AS {alias}{hint_sql}"

    def _select_list(self) -> List[str]:
        select = []
        names = set()
        for col in self.spec.projector.columns:
            if col.load_expression:
                select.append(f"({col.load_expression}) AS {quote_identifier(col.name)}")
            else:
                select.append(column_ref(SOURCE_ALIAS, col.name))
            names.add(col.name)

        relation = self.spec.relation
        if relation.is_bound:
            for col in relation.related_projection:
                if col.name in names:
                    raise ConfigurationError(
                        f"Related column '{col.name}' clashes with a projected source column"
                    )
                select.append(f"{column_ref(RELATED_ALIAS, col.name)} AS {quote_identifier(col.name)}")
                names.add(col.name)

        if not select:
            raise ConfigurationError(f"No columns to fetch from {self.spec.source_table.full_name}")
        return select

    def _from_clause(self) -> List[str]:
        lines = [f"FROM {self._table_source(self.spec.source_table, SOURCE_ALIAS)}"]
        relation = self.spec.relation
        if relation.is_bound:
            lines.append(
                f"{JOIN_KEYWORDS[relation.join_kind]} "
                f"{self._table_source(relation.related_table, RELATED_ALIAS)} "
                f"ON {column_ref(RELATED_ALIAS, relation.related_column.name)} = "
                f"{column_ref(SOURCE_ALIAS, relation.source_column.name)}"
            )
        return lines

    def _effective_start_key(self, is_first_fetch: bool) -> Tuple[Any, ...]:
        restart = self.spec.restart
        if is_first_fetch:
            start_key = restart.key if restart.is_resuming else ()
        else:
            start_key = self.spec.start_key

        key_count = len(self.spec.key_column_names)
        if start_key and len(start_key) != key_count:
            raise ConfigurationError(
                f"Start key {start_key!r} has {len(start_key)} values, expected {key_count}"
            )
        return tuple(start_key)

    def _effective_partition(self, partition_number: Optional[int], is_first_fetch: bool) -> int:
        if partition_number is None:
            restart = self.spec.restart
            if is_first_fetch and restart.is_resuming:
                partition_number = restart.partition
            else:
                partition_number = self.spec.partition_number

        if isinstance(partition_number, bool) or not isinstance(partition_number, int) or partition_number < 1:
            raise ConfigurationError(f"Invalid partition number: {partition_number!r}")
        return partition_number

    def build(
        self,
        batch_size: int,
        partition_number: Optional[int] = None,
        is_first_fetch: bool = False,
    ) -> BatchQueries:
        """
        Build the limit, batch and last-row statements for the next batch.

        Args:
            batch_size: Rows per batch (> 0)
            partition_number: Partition to read; defaults to the restart
                partition on a resuming first fetch, else the key-range spec's partition
            is_first_fetch: True for the first batch of a run. A fresh run
                scans from the start of the table, a resumed run from the
                restart key.

        Returns:
            BatchQueries

        Raises:
            ConfigurationError: On an empty key, invalid batch size or partition
        """
        spec = self.spec
        key_names = spec.key_column_names
        if not key_names:
            raise ConfigurationError("Cannot build a keyset query without key columns")
        if isinstance(batch_size, bool) or not isinstance(batch_size, int) or batch_size <= 0:
            raise ConfigurationError(f"Invalid batch size: {batch_size!r} (must be a positive integer)")

        start_key = self._effective_start_key(is_first_fetch)
        partition = self._effective_partition(partition_number, is_first_fetch)

        src_keys = [column_ref(SOURCE_ALIAS, name) for name in key_names]

        # Conditions shared by the limit and batch statements, in placeholder order
        conditions = []
        params: List[Any] = []
        partition_sql = spec.partition_predicate()
        if partition_sql:
            conditions.append(partition_sql)
            params.append(partition)
        if start_key:
            conditions.append(tuple_comparison(src_keys, '>'))
            params.extend(tuple_comparison_params(start_key))

        source = self._table_source(spec.source_table, SOURCE_ALIAS)
        key_order = ', '.join(src_keys)

        # 1. Limit discovery
        inner = [f"    SELECT TOP ({batch_size}) {', '.join(src_keys)}", f"    FROM {source}"]
        if conditions:
            inner.append("    WHERE " + ' AND '.join(f"({c})" for c in conditions))
        inner.append(f"    ORDER BY {key_order}")
        lim_keys = [column_ref(LIMIT_ALIAS, name) for name in key_names]
        limit_sql = '\n'.join(
            [f"SELECT TOP (1) {', '.join(lim_keys)}, COUNT(*) OVER () AS {quote_identifier(BATCH_ROWS_COLUMN)}",
             "FROM ("]
            + inner
            + [f") AS {LIMIT_ALIAS}",
               "ORDER BY " + ', '.join(f"{ref} DESC" for ref in lim_keys)]
        )

        select_list = self._select_list()
        from_lines = self._from_clause()
        and_where = spec.and_where.strip() if spec.and_where else None

        # 2. Batch fetch
        batch_conditions = conditions + [tuple_comparison(src_keys, '<=')]
        if and_where:
            batch_conditions.append(and_where)
        batch_lines = [f"SELECT {', '.join(select_list)}"] + from_lines
        batch_lines.append("WHERE " + ' AND '.join(f"({c})" for c in batch_conditions))
        if spec.order_by:
            batch_lines.append(f"ORDER BY {key_order}")
        batch_sql = '\n'.join(batch_lines)

        # 3. Last row
        last_lines = [f"SELECT {', '.join(select_list)}"] + from_lines
        last_lines.append("WHERE " + ' AND '.join(f"{ref} = ?" for ref in src_keys))
        last_row_sql = '\n'.join(last_lines)

        logger.debug(f"Limit query for {spec.name}:\n{limit_sql}")
        logger.debug(f"Batch query for {spec.name}:\n{batch_sql}")

        return BatchQueries(
            limit_sql=limit_sql,
            limit_params=params,
            batch_sql=batch_sql,
            last_row_sql=last_row_sql,
            start_key=start_key,
            partition_number=partition if partition_sql else None,
            batch_size=batch_size,
            key_column_names=list(key_names),
        )
