"""
Taxonomy store - hierarchical registry of taxonomy nodes
"""
from sqlalchemy.orm import Session

from nodescore.domain.errors import InvalidInputError, NodeNotFoundError
from nodescore.infrastructure.db.models import TaxonomyNode


class TaxonomyStore:
    """
    Create / read / delete taxonomy nodes

    Deleting a node removes its subtree together with every NodeMetric and
    Opportunity they own (ON DELETE CASCADE on all child tables).
    """

    def __init__(self, db: Session):
        self.db = db

    def create_node(
        self,
        account_id: int,
        title: str,
        path: str,
        url: str | None = None,
        parent_id: int | None = None,
    ) -> TaxonomyNode:
        """
        Args:
            account_id: owner account
            title: category title ("Running shoes")
            path: hierarchical path ("/shoes/running")
            url: category page URL (optional)
            parent_id: parent node, must belong to the same account

        Raises:
            InvalidInputError: blank title or path
            NodeNotFoundError: unknown parent
        """
        title = (title or "").strip()
        path = (path or "").strip()
        if not title:
            raise InvalidInputError("Node title cannot be empty")
        if not path:
            raise InvalidInputError("Node path cannot be empty")

        depth = 0
        if parent_id is not None:
            parent = self.get_node(parent_id, account_id=account_id)
            depth = parent.depth + 1

        node = TaxonomyNode(
            account_id=account_id,
            parent_id=parent_id,
            title=title,
            path=path,
            url=url,
            depth=depth,
        )
        self.db.add(node)
        self.db.commit()
        return node

    def get_node(self, node_id: int, account_id: int | None = None) -> TaxonomyNode:
        """Raises NodeNotFoundError if absent or owned by another account"""
        query = self.db.query(TaxonomyNode).filter(TaxonomyNode.id == node_id)
        if account_id is not None:
            query = query.filter(TaxonomyNode.account_id == account_id)
        node = query.first()
        if node is None:
            raise NodeNotFoundError(node_id)
        return node

    def list_children(self, node_id: int) -> list[TaxonomyNode]:
        self.get_node(node_id)
        return (
            self.db.query(TaxonomyNode)
            .filter(TaxonomyNode.parent_id == node_id)
            .order_by(TaxonomyNode.title.asc(), TaxonomyNode.id.asc())
            .all()
        )

    def delete_node(self, node_id: int, account_id: int | None = None) -> None:
        node = self.get_node(node_id, account_id=account_id)
        self.db.delete(node)
        self.db.commit()
