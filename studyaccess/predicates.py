"""
Compiling grant lists into parameterized study/sample filter predicates.

Clause text only ever contains trusted column expressions from a
TableContext and ``:p<N>`` placeholders; every grant value travels in the
Predicate's params.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence

from studyaccess.config import SAMPLE_ADMIN
from studyaccess.errors import EmptyGrantSet
from studyaccess.models import Grant, Predicate


@dataclass(frozen=True)
class TableContext:
    """Which columns of a query represent study and sample membership."""
    name: str
    study_column: str
    # Column form: the row itself carries a nullable sample id.
    sample_column: Optional[str] = None
    # Bridge form: membership lives in a user/sample bridge table.
    bridge_table: Optional[str] = None
    bridge_user_column: str = "user_id"
    user_column: Optional[str] = None

    def sample_test(self, placeholder: str) -> str:
        if self.sample_column:
            return (
                f"({self.sample_column} IS NULL "
                f"OR CAST({self.sample_column} AS TEXT) = ANY({placeholder}))"
            )
        if self.bridge_table and self.user_column:
            return (
                f"EXISTS (SELECT 1 FROM {self.bridge_table} su "
                f"WHERE su.{self.bridge_user_column} = {self.user_column} "
                f"AND CAST(su.sample_id AS TEXT) = ANY({placeholder}))"
            )
        raise ValueError(f"Table context '{self.name}' has no sample membership rule.")


# Participants (fw_psy_user aliased as u); sample membership via the bridge table.
USER_CONTEXT = TableContext(
    name="user",
    study_column="u.study_id",
    bridge_table="fw_psy_sample_user",
    user_column="u.user_id",
)

# Dataset files (fw_psy_dataset_file aliased as df); null sample = whole study.
DATASET_CONTEXT = TableContext(
    name="dataset",
    study_column="df.study_id",
    sample_column="df.sample_id",
)


def placeholder(index: int) -> str:
    return f":p{index}"


def compile_predicate(grants: Sequence[Grant], context: TableContext, first_index: int = 1) -> Predicate:
    """
    OR together one clause per grant.

    Placeholders are allocated in two passes: first one per grant, in grant
    order, for the study id; then one per SAMPLE_ADMIN grant, in the order
    those grants appear, for its sample-id array.
    """
    if not grants:
        raise EmptyGrantSet("Cannot compile an access predicate without grants.")
    if first_index < 1:
        raise ValueError("Placeholder indexes start at 1.")

    study_index = {}
    study_params: List[str] = []
    for i, grant in enumerate(grants):
        study_index[i] = first_index + i
        study_params.append(grant.study_id)

    sample_index = {}
    sample_params: List[List[str]] = []
    next_index = first_index + len(grants)
    for i, grant in enumerate(grants):
        if grant.role == SAMPLE_ADMIN:
            sample_index[i] = next_index
            next_index += 1
            # An empty list still binds, so the clause never widens to the whole study.
            sample_params.append(sorted(grant.sample_ids or ()))

    clauses = []
    for i, grant in enumerate(grants):
        study_test = f"{context.study_column} = {placeholder(study_index[i])}"
        if i in sample_index:
            clauses.append(f"({study_test} AND {context.sample_test(placeholder(sample_index[i]))})")
        else:
            clauses.append(f"({study_test})")

    return Predicate(
        clause=" OR ".join(clauses),
        study_params=tuple(study_params),
        sample_params=tuple(sample_params),
        first_index=first_index,
    )
