"""
Error taxonomy shared by the taxonomy store, metrics ledger, opportunity engine
and schema evolution manager
"""


class NodeScoreError(Exception):
    """Base class for all domain errors"""
    pass


class NodeNotFoundError(NodeScoreError, LookupError):
    """Referenced taxonomy node does not exist (or is not visible to the caller)"""

    def __init__(self, node_id):
        self.node_id = node_id
        super().__init__(f"Taxonomy node #{node_id} not found")


class InvalidInputError(NodeScoreError, ValueError):
    """Malformed payload"""
    pass


class InvalidMeasureError(InvalidInputError):
    """Empty measure mapping or a non-numeric measure value"""
    pass


class OpportunityConflictError(NodeScoreError):
    """Uniqueness violation on the active opportunity of a node"""
    pass


class StaleMetricsError(NodeScoreError):
    """
    No new metrics since the last successful scoring

    Benign: the engine turns it into a "stale" outcome instead of a failure.
    """

    def __init__(self, node_id):
        self.node_id = node_id
        super().__init__(f"No new metrics for node #{node_id} since last scoring")


class ScoringPolicyError(NodeScoreError):
    """Scoring strategy failed or returned a malformed result"""
    pass


class MigrationStateError(NodeScoreError):
    """apply/rollback requested in a state that does not allow it"""
    pass


class DestructiveActionRequiresConfirmation(NodeScoreError):
    """Rollback attempted without acknowledging the data loss"""

    def __init__(self, version: str, doomed_rows: dict[str, int]):
        self.version = version
        self.doomed_rows = doomed_rows
        details = ", ".join(f"{table}: {count} row(s)" for table, count in doomed_rows.items())
        super().__init__(
            f"Rolling back {version} permanently deletes {details or 'its tables'}. "
            f"Pass acknowledge_data_loss=True to proceed."
        )
